"""Vigil: adaptive market alert monitoring."""

__version__ = "0.1.0"
