"""BudStack webhook delivery and Dr. Green integration."""

__version__ = "1.0.0"
