"""Campus event management - duplicate event detection core."""

__version__ = "0.1.0"
