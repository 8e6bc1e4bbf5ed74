"""Command-line interface for Wine Offers."""
