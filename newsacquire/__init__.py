"""Resilient news acquisition and extraction core."""

__version__ = "0.1.0"
