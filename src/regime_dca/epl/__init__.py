"""Candle ingestion buffers."""
