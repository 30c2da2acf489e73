"""Catalog Pipeline CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv

from catalog_pipeline import __version__
from catalog_pipeline.cli.runs import adapters_app, brands_app, runs_app, start_worker

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = typer.Typer(
    name="catalog-pipeline",
    help="Catalog Pipeline - crawl brand storefronts and enrich their products",
    add_completion=False,
)
app.add_typer(runs_app, name="runs")
app.add_typer(brands_app, name="brands")
app.add_typer(adapters_app, name="adapters")


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
    key_var = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"
    if os.environ.get(key_var):
        typer.echo(f"  AI Provider: {provider} (configured)")
    else:
        typer.echo(f"  AI Provider: {provider} (not configured, enrichment items will fail)")
        typer.echo(f"  Tip: Set {key_var} in .env file to enable enrichment")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the trigger API server."""
    import uvicorn

    typer.echo(f"Starting Catalog Pipeline on http://{host}:{port}")
    _check_ai_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "catalog_pipeline.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db(
    migrate: bool = typer.Option(False, "--migrate", help="Use Alembic migrations"),
) -> None:
    """Initialize the database (create tables)."""
    from catalog_pipeline.db.engine import init_db as db_init
    from catalog_pipeline.db.engine import run_migrations

    typer.echo("Initializing database...")
    if migrate:
        run_migrations()
    else:
        db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def version() -> None:
    """Show the Catalog Pipeline version."""
    typer.echo(f"Catalog Pipeline v{__version__}")


@app.command()
def worker(
    burst: bool = typer.Option(False, "--burst", help="Run in burst mode (exit when queue empty)"),
) -> None:
    """
    Start the queue worker.

    The worker processes queued pipeline items from Redis.
    """
    if not os.environ.get("REDIS_URL"):
        typer.echo("REDIS_URL is not set; the worker needs Redis")
        raise typer.Exit(1)
    start_worker(burst)


if __name__ == "__main__":
    app()
