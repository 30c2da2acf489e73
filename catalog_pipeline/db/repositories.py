"""Repository classes for the run/item state machine and brands.

Every state transition is a single conditional UPDATE and the affected
row count is the success signal. Nothing here reads a row, decides in
Python, and writes it back for an item transition.
"""

import json
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.orm import Session, selectinload

from catalog_pipeline.core.enums import ACTIVE_RUN_STATUSES, ItemStatus, PipelineKind, RunStatus
from catalog_pipeline.core.errors import RunNotFoundError, ScopeBusyError
from catalog_pipeline.core.schema import RunSummary
from catalog_pipeline.db.models import ItemDB, RunDB, _generate_uuid
from catalog_pipeline.db.models_catalog import BrandDB, ProductDB


def _utc_now() -> datetime:
    """Return current UTC datetime."""
    return datetime.now(UTC)


def _ms_ago(ms: int) -> datetime:
    return _utc_now() - timedelta(milliseconds=ms)


def load_json(text: str | None, default: Any) -> Any:
    """Decode a JSON column, falling back to default on empty/invalid content."""
    if not text:
        return default
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return default


@dataclass(frozen=True)
class WorkRef:
    """Reference to one unit of work inside a run."""

    url: str | None = None
    external_id: str | None = None
    handle: str | None = None
    product_id: str | None = None


@dataclass(frozen=True)
class SweepResult:
    """Number of items reset to pending by a sweep."""

    queued: int = 0
    stuck: int = 0

    @property
    def total(self) -> int:
        return self.queued + self.stuck


_CLAIMABLE = (ItemStatus.PENDING.value, ItemStatus.FAILED.value)
_RUNNABLE = (ItemStatus.PENDING.value, ItemStatus.FAILED.value, ItemStatus.QUEUED.value)
_ACTIVE = tuple(s.value for s in ACTIVE_RUN_STATUSES)


# ============================================================================
# Run / Item State Machine
# ============================================================================


class RunRepository:
    """
    Persistent run/item state machine for one pipeline kind.

    Item lifecycle: pending -> queued -> in_progress -> completed|failed.
    Failed items are retried while attempts < max_attempts; after that
    they are terminal and only surface at finalization.
    """

    def __init__(self, session: Session, kind: PipelineKind | str, max_attempts: int = 3):
        self.session = session
        self.kind = PipelineKind(kind).value
        self.max_attempts = max_attempts

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def create_run(
        self,
        scope: str,
        refs: list[WorkRef],
        metadata: dict[str, Any] | None = None,
    ) -> RunDB:
        """
        Create a run and bulk-insert one pending item per work reference.

        Raises:
            ScopeBusyError: If the scope already has an active run.
        """
        active = self.find_active_run(scope)
        if active is not None:
            raise ScopeBusyError(self.kind, scope, active.id)

        now = _utc_now()
        run = RunDB(
            id=_generate_uuid(),
            kind=self.kind,
            scope=scope,
            status=RunStatus.PROCESSING.value,
            total_items=len(refs),
            started_at=now,
            updated_at=now,
            consecutive_errors=0,
            metadata_json=json.dumps(metadata or {}),
        )
        self.session.add(run)
        self.session.flush()

        if refs:
            self.session.execute(
                insert(ItemDB),
                [
                    {
                        "id": _generate_uuid(),
                        "run_id": run.id,
                        "ref_url": ref.url,
                        "ref_external_id": ref.external_id,
                        "ref_handle": ref.handle,
                        "product_id": ref.product_id,
                        "status": ItemStatus.PENDING.value,
                        "attempts": 0,
                        "created_at": now,
                        "updated_at": now,
                    }
                    for ref in refs
                ],
            )
        return run

    def get_run(self, run_id: str) -> RunDB | None:
        """Get a run of this kind by ID."""
        stmt = select(RunDB).where(RunDB.id == run_id, RunDB.kind == self.kind)
        return self.session.execute(stmt).scalar_one_or_none()

    def require_run(self, run_id: str) -> RunDB:
        """Get a run by ID or raise RunNotFoundError."""
        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(f"{self.kind} run {run_id} not found")
        return run

    def find_active_run(self, scope: str) -> RunDB | None:
        """Return the single active run for a scope, if any."""
        stmt = (
            select(RunDB)
            .where(RunDB.kind == self.kind, RunDB.scope == scope, RunDB.status.in_(_ACTIVE))
            .order_by(RunDB.updated_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def find_latest_run(self, scope: str) -> RunDB | None:
        """Return the most recently started run for a scope."""
        stmt = (
            select(RunDB)
            .where(RunDB.kind == self.kind, RunDB.scope == scope)
            .order_by(RunDB.started_at.desc())
            .limit(1)
        )
        return self.session.execute(stmt).scalars().first()

    def list_active_runs(self, limit: int = 10, scope: str | None = None) -> list[RunDB]:
        """List processing runs, least recently touched first."""
        stmt = select(RunDB).where(
            RunDB.kind == self.kind, RunDB.status == RunStatus.PROCESSING.value
        )
        if scope is not None:
            stmt = stmt.where(RunDB.scope == scope)
        stmt = stmt.order_by(RunDB.updated_at.asc()).limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def set_status(
        self,
        run_id: str,
        status: RunStatus | str,
        block_reason: str | None = None,
        last_error: str | None = None,
    ) -> None:
        """Change the run status, optionally recording why."""
        values: dict[str, Any] = {"status": RunStatus(status).value, "updated_at": _utc_now()}
        if block_reason is not None:
            values["block_reason"] = block_reason
        if last_error is not None:
            values["last_error"] = last_error
        self.session.execute(
            update(RunDB).where(RunDB.id == run_id).values(**values)
        )

    def resume_run(self, run_id: str) -> None:
        """Put a run back into processing and clear its error state."""
        self.session.execute(
            update(RunDB)
            .where(RunDB.id == run_id)
            .values(
                status=RunStatus.PROCESSING.value,
                block_reason=None,
                last_error=None,
                consecutive_errors=0,
                finished_at=None,
                updated_at=_utc_now(),
            )
        )

    def record_item_success(self, run_id: str, ref: str | None, stage: str | None) -> None:
        """Reset the consecutive error streak after a completed item."""
        self.session.execute(
            update(RunDB)
            .where(RunDB.id == run_id)
            .values(
                last_ref=ref,
                last_stage=stage,
                last_error=None,
                consecutive_errors=0,
                updated_at=_utc_now(),
            )
        )

    def record_item_failure(
        self, run_id: str, ref: str | None, stage: str | None, error: str
    ) -> int:
        """
        Record a failed item on the run.

        Returns:
            The new consecutive error count.
        """
        self.session.execute(
            update(RunDB)
            .where(RunDB.id == run_id)
            .values(
                last_ref=ref,
                last_stage=stage,
                last_error=error,
                consecutive_errors=RunDB.consecutive_errors + 1,
                updated_at=_utc_now(),
            )
        )
        stmt = select(RunDB.consecutive_errors).where(RunDB.id == run_id)
        return self.session.execute(stmt).scalar() or 0

    def update_metadata(self, run_id: str, patch: dict[str, Any]) -> None:
        """Merge keys into the run's metadata."""
        run = self.require_run(run_id)
        metadata = load_json(run.metadata_json, {})
        metadata.update(patch)
        run.metadata_json = json.dumps(metadata)
        self.session.flush()

    def delete_run(self, run_id: str) -> bool:
        """Delete a run and, by cascade, its items."""
        run = self.get_run(run_id)
        if run is None:
            return False
        self.session.execute(delete(ItemDB).where(ItemDB.run_id == run_id))
        self.session.delete(run)
        self.session.flush()
        return True

    # ------------------------------------------------------------------
    # Items
    # ------------------------------------------------------------------

    def get_item(self, item_id: str) -> ItemDB | None:
        """Get an item of this kind by ID."""
        stmt = (
            select(ItemDB)
            .join(RunDB, RunDB.id == ItemDB.run_id)
            .where(ItemDB.id == item_id, RunDB.kind == self.kind)
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_claimable(self, run_id: str, limit: int = 1000) -> list[ItemDB]:
        """Pending/failed items below the attempt ceiling, oldest first."""
        return self._list_items(run_id, _CLAIMABLE, limit)

    def list_runnable(self, run_id: str, limit: int = 100) -> list[ItemDB]:
        """Like list_claimable, but also includes queued items."""
        return self._list_items(run_id, _RUNNABLE, limit)

    def _list_items(self, run_id: str, statuses: tuple[str, ...], limit: int) -> list[ItemDB]:
        stmt = (
            select(ItemDB)
            .where(
                ItemDB.run_id == run_id,
                ItemDB.status.in_(statuses),
                ItemDB.attempts < self.max_attempts,
            )
            .order_by(ItemDB.updated_at.asc())
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars().all())

    def mark_queued(self, item_ids: list[str]) -> list[str]:
        """
        Move pending/failed items to queued.

        Each row is moved by its own conditional update, so rows already
        taken by another caller are skipped.

        Returns:
            IDs of the rows actually moved, in input order.
        """
        moved = []
        now = _utc_now()
        for item_id in item_ids:
            result = self.session.execute(
                update(ItemDB)
                .where(ItemDB.id == item_id, ItemDB.status.in_(_CLAIMABLE))
                .values(status=ItemStatus.QUEUED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                moved.append(item_id)
        return moved

    def claim_for_processing(self, item_id: str, stuck_ms: int = 0) -> bool:
        """
        Atomically claim an item for processing.

        Matches pending/queued/failed items below the attempt ceiling, plus
        in_progress items whose claim is older than stuck_ms (when > 0).

        Returns:
            True if this caller won the claim.
        """
        eligible = ItemDB.status.in_(_RUNNABLE)
        if stuck_ms > 0:
            eligible = or_(
                eligible,
                and_(
                    ItemDB.status == ItemStatus.IN_PROGRESS.value,
                    ItemDB.started_at < _ms_ago(stuck_ms),
                ),
            )
        now = _utc_now()
        result = self.session.execute(
            update(ItemDB)
            .where(ItemDB.id == item_id, ItemDB.attempts < self.max_attempts, eligible)
            .values(
                status=ItemStatus.IN_PROGRESS.value,
                attempts=ItemDB.attempts + 1,
                started_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def complete_item(
        self,
        item_id: str,
        stage: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> None:
        """Mark an item completed. Attempts are left untouched."""
        now = _utc_now()
        self.session.execute(
            update(ItemDB)
            .where(ItemDB.id == item_id)
            .values(
                status=ItemStatus.COMPLETED.value,
                completed_at=now,
                updated_at=now,
                last_error=None,
                last_stage=stage,
                result_json=json.dumps(result) if result is not None else None,
            )
            .execution_options(synchronize_session=False)
        )

    def fail_item(self, item_id: str, error: str, stage: str | None = None) -> None:
        """Mark an item failed. It stays retryable while attempts < max_attempts."""
        self.session.execute(
            update(ItemDB)
            .where(ItemDB.id == item_id)
            .values(
                status=ItemStatus.FAILED.value,
                last_error=error[:2000],
                last_stage=stage,
                updated_at=_utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

    def reset_item_pending(self, item_id: str) -> int:
        """Return a queued/in_progress item to pending."""
        result = self.session.execute(
            update(ItemDB)
            .where(
                ItemDB.id == item_id,
                ItemDB.status.in_((ItemStatus.QUEUED.value, ItemStatus.IN_PROGRESS.value)),
            )
            .values(status=ItemStatus.PENDING.value, updated_at=_utc_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    def sweep_stale(self, run_id: str, queued_stale_ms: int, stuck_ms: int) -> SweepResult:
        """
        Reset stranded items back to pending.

        queued items untouched for queued_stale_ms and in_progress items
        claimed more than stuck_ms ago. A threshold of 0 disables that half.
        """
        queued = stuck = 0
        if queued_stale_ms > 0:
            result = self.session.execute(
                update(ItemDB)
                .where(
                    ItemDB.run_id == run_id,
                    ItemDB.status == ItemStatus.QUEUED.value,
                    ItemDB.updated_at < _ms_ago(queued_stale_ms),
                )
                .values(status=ItemStatus.PENDING.value, updated_at=_utc_now())
                .execution_options(synchronize_session=False)
            )
            queued = result.rowcount or 0
        if stuck_ms > 0:
            result = self.session.execute(
                update(ItemDB)
                .where(
                    ItemDB.run_id == run_id,
                    ItemDB.status == ItemStatus.IN_PROGRESS.value,
                    ItemDB.started_at < _ms_ago(stuck_ms),
                )
                .values(status=ItemStatus.PENDING.value, updated_at=_utc_now())
                .execution_options(synchronize_session=False)
            )
            stuck = result.rowcount or 0
        return SweepResult(queued=queued, stuck=stuck)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    def count_by_status(self, run_id: str) -> dict[str, int]:
        """Live item counts grouped by status."""
        stmt = (
            select(ItemDB.status, func.count())
            .where(ItemDB.run_id == run_id)
            .group_by(ItemDB.status)
        )
        return {status: count for status, count in self.session.execute(stmt).all()}

    def summarize(self, run_id: str) -> RunSummary:
        """Build the run summary from live item counts."""
        run = self.require_run(run_id)
        counts = self.count_by_status(run_id)
        total = run.total_items or sum(counts.values())
        completed = counts.get(ItemStatus.COMPLETED.value, 0)
        failed = counts.get(ItemStatus.FAILED.value, 0)
        return RunSummary(
            run_id=run.id,
            kind=PipelineKind(run.kind),
            scope=run.scope,
            status=run.status,
            total=total,
            completed=completed,
            failed=failed,
            pending=max(0, total - completed - failed),
            queued=counts.get(ItemStatus.QUEUED.value, 0),
            in_progress=counts.get(ItemStatus.IN_PROGRESS.value, 0),
            last_error=run.last_error,
            block_reason=run.block_reason,
            last_stage=run.last_stage,
            last_ref=run.last_ref,
            consecutive_errors=run.consecutive_errors or 0,
            started_at=run.started_at,
            updated_at=run.updated_at,
            finished_at=run.finished_at,
        )

    def finalize(self, run_id: str) -> RunStatus | None:
        """
        Close the run once no retryable work remains.

        Returns:
            The final status (completed or blocked), or None if work remains
            or the run is already closed.
        """
        run = self.require_run(run_id)
        if run.status not in _ACTIVE:
            return None

        remaining_stmt = select(func.count()).where(
            ItemDB.run_id == run_id,
            or_(
                ItemDB.status.in_(
                    (
                        ItemStatus.PENDING.value,
                        ItemStatus.QUEUED.value,
                        ItemStatus.IN_PROGRESS.value,
                    )
                ),
                and_(
                    ItemDB.status == ItemStatus.FAILED.value,
                    ItemDB.attempts < self.max_attempts,
                ),
            ),
        )
        if (self.session.execute(remaining_stmt).scalar() or 0) > 0:
            return None

        failed_stmt = select(func.count()).where(
            ItemDB.run_id == run_id, ItemDB.status == ItemStatus.FAILED.value
        )
        terminal_failures = self.session.execute(failed_stmt).scalar() or 0

        now = _utc_now()
        if terminal_failures:
            status = RunStatus.BLOCKED
            block_reason = f"max_attempts:{terminal_failures}"
        else:
            status = RunStatus.COMPLETED
            block_reason = None
        self.session.execute(
            update(RunDB)
            .where(RunDB.id == run_id)
            .values(
                status=status.value,
                block_reason=block_reason,
                finished_at=now,
                updated_at=now,
            )
        )
        return status


# ============================================================================
# Brands
# ============================================================================


class BrandRepository:
    """Repository for brand records."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        name: str,
        slug: str,
        site_url: str | None = None,
        ecommerce_platform: str | None = None,
    ) -> BrandDB:
        """Create a new brand."""
        brand = BrandDB(
            id=_generate_uuid(),
            name=name,
            slug=slug,
            site_url=site_url,
            ecommerce_platform=ecommerce_platform,
            metadata_json="{}",
        )
        self.session.add(brand)
        self.session.flush()
        return brand

    def get_by_id(self, brand_id: str) -> BrandDB | None:
        """Get a brand by ID."""
        return self.session.get(BrandDB, brand_id)

    def get_by_slug(self, slug: str) -> BrandDB | None:
        """Get a brand by slug."""
        stmt = select(BrandDB).where(BrandDB.slug == slug)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_all(self, active_only: bool = False) -> list[BrandDB]:
        """List brands ordered by name."""
        stmt = select(BrandDB)
        if active_only:
            stmt = stmt.where(BrandDB.is_active.is_(True))
        stmt = stmt.order_by(BrandDB.name)
        return list(self.session.execute(stmt).scalars().all())

    def update_metadata(self, brand_id: str, patch: dict[str, Any]) -> None:
        """Merge keys into the brand's metadata."""
        brand = self.get_by_id(brand_id)
        if brand is None:
            raise ValueError(f"Brand with id {brand_id} not found")
        metadata = load_json(brand.metadata_json, {})
        metadata.update(patch)
        brand.metadata_json = json.dumps(metadata)
        self.session.flush()


# ============================================================================
# Products
# ============================================================================


class ProductRepository:
    """Read access to canonical products for the enrichment pipeline."""

    def __init__(self, session: Session):
        self.session = session

    def get_with_variants(self, product_id: str) -> ProductDB | None:
        """Get a product with its variants and brand loaded."""
        stmt = (
            select(ProductDB)
            .where(ProductDB.id == product_id)
            .options(selectinload(ProductDB.variants), selectinload(ProductDB.brand))
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def list_for_scope(self, scope: str, limit: int | None = None) -> list[ProductDB]:
        """
        List products of a brand, or of every brand when scope is "all".

        Ordered by creation time so repeated runs see a stable order.
        """
        stmt = select(ProductDB)
        if scope != "all":
            stmt = stmt.where(ProductDB.brand_id == scope)
        stmt = stmt.order_by(ProductDB.created_at, ProductDB.id)
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())
