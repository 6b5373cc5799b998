"""Quota-aware dispatcher for CLI coding agents."""

__version__ = "0.1.0"
