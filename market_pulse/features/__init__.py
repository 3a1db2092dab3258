"""Indicator, options-flow and fundamentals computation."""

from market_pulse.features.technicals import compute_indicators, latest_snapshot

__all__ = ["compute_indicators", "latest_snapshot"]
