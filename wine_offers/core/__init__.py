"""Core domain models and enums for Wine Offers."""
