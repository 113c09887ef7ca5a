"""Periodic data point collector for metrics backends."""

__version__ = "0.1.0"
