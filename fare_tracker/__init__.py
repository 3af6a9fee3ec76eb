"""Round-trip fare tracking with price-drop alerts."""

__version__ = "0.1.0"
