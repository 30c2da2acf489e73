"""SQLAlchemy ORM models for the generic run/item state machine."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utc_now() -> datetime:
    """Return current UTC datetime (timezone-aware)."""
    return datetime.now(UTC)


def _generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid4())


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class RunDB(Base):
    """
    Database model for pipeline runs.

    One row per batch execution of a pipeline kind (catalog crawl,
    enrichment) over a scope. Aggregates are never stored here; they
    are computed from the items on demand.
    """

    __tablename__ = "pipeline_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    scope: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="processing")
    total_items: Mapped[int] = mapped_column(Integer, default=0)

    started_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_ref: Mapped[str | None] = mapped_column(String(512), nullable=True)
    consecutive_errors: Mapped[int] = mapped_column(Integer, default=0)
    metadata_json: Mapped[str] = mapped_column(Text, default="{}")

    items: Mapped[list["ItemDB"]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_pipeline_runs_kind_scope_status", "kind", "scope", "status"),
        Index("ix_pipeline_runs_updated_at", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<RunDB(id={self.id}, kind={self.kind}, scope={self.scope}, status={self.status})>"


class ItemDB(Base):
    """
    Database model for run items.

    One row per unit of work. The work reference is either a product id
    (enrichment) or a discovered URL plus external id (catalog).
    """

    __tablename__ = "pipeline_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_generate_uuid)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("pipeline_runs.id", ondelete="CASCADE"), nullable=False
    )

    # Work reference
    ref_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ref_external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ref_handle: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending")
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_stage: Mapped[str | None] = mapped_column(String(64), nullable=True)
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_utc_now, onupdate=_utc_now)

    run: Mapped[RunDB] = relationship(back_populates="items")

    __table_args__ = (
        Index("ix_pipeline_items_run_status", "run_id", "status"),
        Index("ix_pipeline_items_run_updated", "run_id", "updated_at"),
    )

    @property
    def ref_label(self) -> str:
        """Human-readable work reference."""
        return self.ref_url or self.product_id or self.ref_external_id or self.id

    def __repr__(self) -> str:
        return f"<ItemDB(id={self.id}, status={self.status}, attempts={self.attempts})>"
