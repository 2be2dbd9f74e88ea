"""Office chat and notification sync core."""

__version__ = "0.1.0"
