"""FastAPI application factory for the catalog pipeline trigger API."""

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalog_pipeline import __version__
from catalog_pipeline.core.errors import (
    QueueDisabledError,
    QueueEnqueueError,
    RunNotFoundError,
    ScopeNotFoundError,
)
from catalog_pipeline.db.engine import init_db

logger = logging.getLogger(__name__)

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


async def _not_found(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


async def _queue_unavailable(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"Queue unavailable for {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Catalog Pipeline",
        description="Trigger API for catalog crawl and enrichment runs",
        version=__version__,
    )

    # Initialize database tables
    init_db()

    app.add_exception_handler(RunNotFoundError, _not_found)
    app.add_exception_handler(ScopeNotFoundError, _not_found)
    app.add_exception_handler(QueueDisabledError, _queue_unavailable)
    app.add_exception_handler(QueueEnqueueError, _queue_unavailable)

    # Include routers (import here to avoid circular imports)
    from catalog_pipeline.web.routes import adapters, runs

    app.include_router(runs.router)
    app.include_router(adapters.router)

    return app


# Application instance
app = create_app()
