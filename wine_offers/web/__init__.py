"""FastAPI admin API for Wine Offers."""
