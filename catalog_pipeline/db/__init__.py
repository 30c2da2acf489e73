"""Database initialization and persistence layer."""

from catalog_pipeline.db.engine import (
    get_database_url,
    get_engine,
    get_session,
    init_db,
    reset_engine,
    session_scope,
)
from catalog_pipeline.db.models import Base, ItemDB, RunDB
from catalog_pipeline.db.models_catalog import (
    BrandDB,
    PriceHistoryDB,
    ProductDB,
    StockHistoryDB,
    VariantDB,
)
from catalog_pipeline.db.repositories import (
    BrandRepository,
    ProductRepository,
    RunRepository,
    WorkRef,
)

__all__ = [
    # Engine
    "get_database_url",
    "get_engine",
    "get_session",
    "init_db",
    "reset_engine",
    "session_scope",
    # Models
    "Base",
    "RunDB",
    "ItemDB",
    "BrandDB",
    "ProductDB",
    "VariantDB",
    "PriceHistoryDB",
    "StockHistoryDB",
    # Repositories
    "RunRepository",
    "BrandRepository",
    "ProductRepository",
    "WorkRef",
]
