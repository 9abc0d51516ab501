"""Availability and booking engine for a single business calendar."""

__version__ = "0.1.0"
