"""Wine Offers CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from wine_offers import __version__
from wine_offers.cli.offers import offers_app, sources_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="wine-offers",
    help="Wine Offers - find catalog wines for sale on third-party shops",
    add_completion=False,
)
app.add_typer(offers_app, name="offers")
app.add_typer(sources_app, name="sources")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    if not verbose:
        logging.getLogger("httpx").setLevel(logging.WARNING)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the admin API server."""
    import uvicorn

    typer.echo(f"Starting Wine Offers API on http://{host}:{port}")
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "wine_offers.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db(
    migrate: bool = typer.Option(
        False, "--migrate", help="Run Alembic migrations instead of create_all"
    ),
) -> None:
    """Initialize the database (create tables)."""
    from wine_offers.db.engine import init_db as db_init
    from wine_offers.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Wine Offers version."""
    typer.echo(f"Wine Offers v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    from wine_offers.db.engine import get_database_url
    from wine_offers.offers.settings import get_default_config

    typer.echo("Wine Offers Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    config = get_default_config()
    typer.echo(f"  Offers config: {config.config_path or 'defaults (no offers.yaml found)'}")
    typer.echo(f"  User-Agent: {config.fetch.user_agent}")
    typer.echo(f"  Match threshold: {config.match.default_threshold}")
    typer.echo(f"  Candidates per source: {config.refresh.max_candidates_per_source}")

    typer.echo(f"  Database: {get_database_url()}")
    redis_host = os.environ.get("REDIS_HOST", "localhost")
    redis_port = os.environ.get("REDIS_PORT", "6379")
    typer.echo(f"  Redis: {redis_host}:{redis_port}")


if __name__ == "__main__":
    app()
