"""Indicators and regime classification."""
