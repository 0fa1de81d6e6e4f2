"""Trader state persistence."""
