"""Wine Offers - external offer discovery and matching for a wine catalog."""

__version__ = "0.1.0"
