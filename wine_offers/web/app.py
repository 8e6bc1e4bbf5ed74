"""FastAPI application factory for Wine Offers."""

from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from wine_offers import __version__
from wine_offers.db.engine import init_db

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Wine Offers",
        description="Admin API for third-party offer discovery and matching",
        version=__version__,
    )

    # Initialize database tables
    init_db()

    # Include routers (import here to avoid circular imports)
    from wine_offers.web.routes import offers

    app.include_router(offers.router)

    return app


# Application instance
app = create_app()
