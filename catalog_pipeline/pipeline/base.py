"""
Pipeline Base Module
====================

Defines the generic pieces every batch pipeline kind is built from:
- WorkItem: the claimed item handed to a handler
- ItemOutcome: what a handler reports back
- ItemHandler: per-kind discovery and item processing
- Pipeline: a handler bound to its kind, configuration and database
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Generator

from sqlalchemy.orm import Session

from catalog_pipeline.config import PipelineConfig
from catalog_pipeline.core.enums import PipelineKind, RunStatus
from catalog_pipeline.db.engine import session_scope
from catalog_pipeline.db.repositories import RunRepository, WorkRef

StageReporter = Callable[[str], None]


@dataclass(frozen=True)
class WorkItem:
    """An item that has been claimed for processing."""

    item_id: str
    run_id: str
    scope: str
    ref: WorkRef
    attempts: int

    @property
    def label(self) -> str:
        """Human-readable reference for logs and run aggregates."""
        return self.ref.url or self.ref.product_id or self.ref.external_id or self.item_id


@dataclass
class ItemOutcome:
    """Result reported by a handler for one item."""

    stage: str | None = None
    result: dict[str, Any] = field(default_factory=dict)


class ItemHandler(ABC):
    """
    Per-kind behaviour plugged into the generic run/item machinery.

    Subclasses must implement:
    - discover: Build the work references for a new run
    - handle: Process one claimed item

    Handlers write through the session they are given; it is committed
    by the caller after handle() returns and rolled back if it raises.
    """

    @abstractmethod
    async def discover(self, session: Session, scope: str, limit: int | None) -> list[WorkRef]:
        """
        Build the work references for a new run over scope.

        Args:
            session: Database session
            scope: Run scope (brand id, or "all")
            limit: Optional cap on the number of references

        Returns:
            List of work references (may be empty)
        """
        pass

    @abstractmethod
    async def handle(
        self, session: Session, item: WorkItem, report_stage: StageReporter
    ) -> ItemOutcome:
        """
        Process one claimed item.

        Raises:
            Exception: Any failure; the item is marked failed and retried
                while it has attempts left.
        """
        pass

    def run_metadata(self, scope: str) -> dict[str, Any]:
        """Metadata stored on runs created for scope."""
        return {}

    def on_finalize(self, session: Session, run_id: str, scope: str, status: RunStatus) -> None:
        """Hook called once when a run is finalized."""

    async def aclose(self) -> None:
        """Release network clients held by the handler."""


class Pipeline:
    """A handler bound to its kind, configuration and session factory."""

    def __init__(
        self,
        kind: PipelineKind | str,
        handler: ItemHandler,
        config: PipelineConfig,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.kind = PipelineKind(kind)
        self.handler = handler
        self.config = config
        self.session_factory = session_factory

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session for one state transition."""
        with session_scope(self.session_factory) as session:
            yield session

    def repository(self, session: Session) -> RunRepository:
        return RunRepository(session, self.kind, max_attempts=self.config.max_attempts)

    def __repr__(self) -> str:
        return f"<Pipeline(kind={self.kind.value}, handler={self.handler.__class__.__name__})>"
