"""Trigger evaluation and the purchase-window state machine."""
