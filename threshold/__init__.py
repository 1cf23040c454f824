"""Asset acquisition pipeline for Infinite Threshold."""

__version__ = "0.1.0"
