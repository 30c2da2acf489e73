"""Tests for the run/item state machine and brand repository."""

import tempfile
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import Session, sessionmaker

from catalog_pipeline.core.enums import ItemStatus, PipelineKind, RunStatus
from catalog_pipeline.core.errors import RunNotFoundError, ScopeBusyError
from catalog_pipeline.db.models import Base, ItemDB
from catalog_pipeline.db.repositories import BrandRepository, RunRepository, WorkRef


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def engine(temp_db_path):
    """Create a test database engine."""
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, echo=False, connect_args={"check_same_thread": False, "timeout": 30})
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine."""
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    """Create a database session for testing."""
    session = session_factory()
    yield session
    session.close()


def _refs(count: int) -> list[WorkRef]:
    return [WorkRef(url=f"https://shop.example/products/p{i}") for i in range(count)]


def _item_ids(session: Session, run_id: str) -> list[str]:
    return [item.id for item in session.query(ItemDB).filter_by(run_id=run_id).order_by(ItemDB.ref_url)]


def _age_items(session: Session, item_ids: list[str], minutes: int) -> None:
    past = datetime.now(UTC) - timedelta(minutes=minutes)
    session.execute(
        update(ItemDB).where(ItemDB.id.in_(item_ids)).values(started_at=past, updated_at=past)
    )
    session.commit()


class TestRunCreation:
    """Tests for creating runs and the active-run invariant."""

    def test_create_run_inserts_pending_items(self, session: Session) -> None:
        """Test that each work reference becomes one pending item."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(3), metadata={"trigger": "catalog"})
        session.commit()

        summary = repo.summarize(run.id)
        assert summary.status == "processing"
        assert summary.total == 3
        assert summary.pending == 3
        assert summary.completed == 0
        assert all(
            item.status == ItemStatus.PENDING.value and item.attempts == 0
            for item in session.query(ItemDB).filter_by(run_id=run.id)
        )

    def test_second_active_run_for_scope_is_rejected(self, session: Session) -> None:
        """Test that a scope can hold only one active run."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()

        with pytest.raises(ScopeBusyError) as exc_info:
            repo.create_run("brand-1", _refs(1))
        assert exc_info.value.run_id == run.id

    def test_paused_run_still_counts_as_active(self, session: Session) -> None:
        """Test that paused runs still block a new run for the scope."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        repo.set_status(run.id, RunStatus.PAUSED)
        session.commit()

        assert repo.find_active_run("brand-1").id == run.id
        with pytest.raises(ScopeBusyError):
            repo.create_run("brand-1", _refs(1))

    def test_kinds_do_not_block_each_other(self, session: Session) -> None:
        """Test that catalog and enrichment runs for one scope coexist."""
        catalog = RunRepository(session, PipelineKind.CATALOG)
        enrichment = RunRepository(session, PipelineKind.ENRICHMENT)
        catalog_run = catalog.create_run("brand-1", _refs(1))
        enrichment_run = enrichment.create_run("brand-1", [WorkRef(product_id="p-1")])
        session.commit()

        assert catalog.find_active_run("brand-1").id == catalog_run.id
        assert enrichment.find_active_run("brand-1").id == enrichment_run.id
        assert catalog.get_run(enrichment_run.id) is None

    def test_completed_run_frees_the_scope(self, session: Session) -> None:
        """Test that a new run can start once the previous one completed."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", [])
        assert repo.finalize(run.id) == RunStatus.COMPLETED
        session.commit()

        second = repo.create_run("brand-1", _refs(1))
        assert second.id != run.id

    def test_require_run_raises_for_unknown_id(self, session: Session) -> None:
        """Test that unknown run IDs raise RunNotFoundError."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        with pytest.raises(RunNotFoundError):
            repo.require_run("missing")


class TestClaims:
    """Tests for atomic item claims."""

    def test_claim_increments_attempts(self, session: Session) -> None:
        """Test that a claim moves the item to in_progress and counts the attempt."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]

        assert repo.claim_for_processing(item_id) is True
        session.commit()

        item = repo.get_item(item_id)
        session.refresh(item)
        assert item.status == ItemStatus.IN_PROGRESS.value
        assert item.attempts == 1
        assert item.started_at is not None

    def test_in_progress_item_cannot_be_claimed_again(self, session: Session) -> None:
        """Test that a second claim on a claimed item fails."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]

        assert repo.claim_for_processing(item_id) is True
        assert repo.claim_for_processing(item_id) is False

    def test_stuck_claim_can_be_taken_over(self, session: Session) -> None:
        """Test that an in_progress item older than stuck_ms is claimable."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]
        repo.claim_for_processing(item_id)
        session.commit()
        _age_items(session, [item_id], minutes=10)

        assert repo.claim_for_processing(item_id, stuck_ms=60_000) is True
        session.commit()
        assert repo.get_item(item_id).attempts == 2

    def test_item_at_attempt_ceiling_is_not_claimable(self, session: Session) -> None:
        """Test that failed items stop being claimable at max_attempts."""
        repo = RunRepository(session, PipelineKind.CATALOG, max_attempts=2)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]

        for _ in range(2):
            assert repo.claim_for_processing(item_id) is True
            repo.fail_item(item_id, "boom", stage="fetch")
            session.commit()

        assert repo.claim_for_processing(item_id) is False
        assert repo.list_claimable(run.id) == []

    def test_concurrent_claims_have_a_single_winner(self, session_factory) -> None:
        """Test that threads racing for one item produce exactly one claim."""
        with session_factory() as setup:
            repo = RunRepository(setup, PipelineKind.CATALOG)
            run = repo.create_run("brand-1", _refs(1))
            setup.commit()
            item_id = _item_ids(setup, run.id)[0]

        results: list[bool] = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def worker() -> None:
            with session_factory() as worker_session:
                barrier.wait()
                won = RunRepository(worker_session, PipelineKind.CATALOG).claim_for_processing(item_id)
                worker_session.commit()
            with lock:
                results.append(won)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count(True) == 1
        with session_factory() as check:
            item = RunRepository(check, PipelineKind.CATALOG).get_item(item_id)
            assert item.attempts == 1

    def test_mark_queued_skips_taken_items(self, session: Session) -> None:
        """Test that mark_queued only moves pending/failed items."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(3))
        session.commit()
        ids = _item_ids(session, run.id)
        repo.claim_for_processing(ids[0])
        session.commit()

        assert repo.mark_queued(ids) == ids[1:]
        session.commit()
        assert repo.summarize(run.id).queued == 2
        assert repo.list_claimable(run.id) == []
        assert len(repo.list_runnable(run.id)) == 2


class TestSweep:
    """Tests for sweeping stranded items."""

    def test_sweep_resets_stale_queued_and_stuck_items(self, session: Session) -> None:
        """Test that old queued and in_progress items go back to pending."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(3))
        session.commit()
        ids = _item_ids(session, run.id)
        repo.mark_queued([ids[0]])
        repo.claim_for_processing(ids[1])
        session.commit()
        _age_items(session, ids[:2], minutes=30)

        result = repo.sweep_stale(run.id, queued_stale_ms=60_000, stuck_ms=60_000)
        session.commit()

        assert result.queued == 1
        assert result.stuck == 1
        assert result.total == 2
        assert len(repo.list_claimable(run.id)) == 3

    def test_sweep_leaves_fresh_items(self, session: Session) -> None:
        """Test that recent claims survive a sweep."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(2))
        session.commit()
        ids = _item_ids(session, run.id)
        repo.mark_queued([ids[0]])
        repo.claim_for_processing(ids[1])
        session.commit()

        result = repo.sweep_stale(run.id, queued_stale_ms=60_000, stuck_ms=60_000)
        assert result.total == 0

    def test_zero_threshold_disables_that_half(self, session: Session) -> None:
        """Test that a threshold of 0 skips the corresponding reset."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]
        repo.mark_queued([item_id])
        session.commit()
        _age_items(session, [item_id], minutes=30)

        assert repo.sweep_stale(run.id, queued_stale_ms=0, stuck_ms=60_000).total == 0


class TestSummaryAndFinalize:
    """Tests for run summaries and finalization."""

    def test_summary_counts_never_lose_work(self, session: Session) -> None:
        """Test that completed + failed + pending always equals total."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(5))
        session.commit()
        ids = _item_ids(session, run.id)

        repo.claim_for_processing(ids[0])
        repo.complete_item(ids[0], stage="upsert", result={"created": True})
        repo.claim_for_processing(ids[1])
        repo.fail_item(ids[1], "timeout", stage="fetch")
        repo.mark_queued([ids[2]])
        repo.claim_for_processing(ids[3])
        session.commit()

        summary = repo.summarize(run.id)
        assert summary.completed == 1
        assert summary.failed == 1
        assert summary.queued == 1
        assert summary.in_progress == 1
        assert summary.pending == 3
        assert summary.completed + summary.failed + summary.pending == summary.total

    def test_finalize_waits_for_retryable_work(self, session: Session) -> None:
        """Test that finalize returns None while items can still run."""
        repo = RunRepository(session, PipelineKind.CATALOG, max_attempts=3)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()
        item_id = _item_ids(session, run.id)[0]
        repo.claim_for_processing(item_id)
        repo.fail_item(item_id, "boom")
        session.commit()

        assert repo.finalize(run.id) is None
        assert repo.summarize(run.id).status == "processing"

    def test_finalize_completes_clean_run(self, session: Session) -> None:
        """Test that a run with every item completed finalizes as completed."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(2))
        session.commit()
        for item_id in _item_ids(session, run.id):
            repo.claim_for_processing(item_id)
            repo.complete_item(item_id)
        session.commit()

        assert repo.finalize(run.id) == RunStatus.COMPLETED
        session.commit()
        summary = repo.summarize(run.id)
        assert summary.status == "completed"
        assert summary.block_reason is None
        assert summary.finished_at is not None

    def test_finalize_blocks_on_terminal_failures(self, session: Session) -> None:
        """Test that exhausted failures finalize the run as blocked."""
        repo = RunRepository(session, PipelineKind.CATALOG, max_attempts=1)
        run = repo.create_run("brand-1", _refs(2))
        session.commit()
        ids = _item_ids(session, run.id)
        repo.claim_for_processing(ids[0])
        repo.complete_item(ids[0])
        repo.claim_for_processing(ids[1])
        repo.fail_item(ids[1], "404")
        session.commit()

        assert repo.finalize(run.id) == RunStatus.BLOCKED
        session.commit()
        summary = repo.summarize(run.id)
        assert summary.status == "blocked"
        assert summary.block_reason == "max_attempts:1"
        assert summary.finished_at is not None

    def test_finalize_is_idempotent(self, session: Session) -> None:
        """Test that a finished run is not finalized twice."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", [])
        assert repo.finalize(run.id) == RunStatus.COMPLETED
        session.commit()
        assert repo.finalize(run.id) is None

    def test_record_failure_counts_consecutive_errors(self, session: Session) -> None:
        """Test that failures accumulate and a success resets the streak."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        session.commit()

        assert repo.record_item_failure(run.id, "p0", "fetch", "timeout") == 1
        assert repo.record_item_failure(run.id, "p0", "fetch", "timeout") == 2
        repo.record_item_success(run.id, "p0", "upsert")
        session.commit()

        summary = repo.summarize(run.id)
        assert summary.consecutive_errors == 0
        assert summary.last_error is None
        assert summary.last_stage == "upsert"

    def test_resume_clears_error_state(self, session: Session) -> None:
        """Test that resuming a paused run puts it back into processing."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(1))
        repo.set_status(run.id, RunStatus.PAUSED, block_reason="consecutive_errors:5", last_error="x")
        session.commit()

        repo.resume_run(run.id)
        session.commit()

        summary = repo.summarize(run.id)
        assert summary.status == "processing"
        assert summary.block_reason is None
        assert summary.last_error is None

    def test_delete_run_removes_items(self, session: Session) -> None:
        """Test that deleting a run deletes its items."""
        repo = RunRepository(session, PipelineKind.CATALOG)
        run = repo.create_run("brand-1", _refs(2))
        session.commit()

        assert repo.delete_run(run.id) is True
        session.commit()
        assert session.query(ItemDB).filter_by(run_id=run.id).count() == 0


class TestBrandRepository:
    """Tests for BrandRepository."""

    def test_create_and_lookup(self, session: Session) -> None:
        """Test creating a brand and finding it by slug."""
        repo = BrandRepository(session)
        brand = repo.create("Mi Marca", "mi-marca", site_url="https://mimarca.co", ecommerce_platform="shopify")
        session.commit()

        assert repo.get_by_slug("mi-marca").id == brand.id
        assert repo.get_by_id(brand.id).ecommerce_platform == "shopify"
        assert [b.slug for b in repo.list_all()] == ["mi-marca"]

    def test_update_metadata_merges_keys(self, session: Session) -> None:
        """Test that metadata patches are merged."""
        repo = BrandRepository(session)
        brand = repo.create("Mi Marca", "mi-marca")
        repo.update_metadata(brand.id, {"a": 1})
        repo.update_metadata(brand.id, {"b": 2})
        session.commit()

        assert brand.metadata_json == '{"a": 1, "b": 2}'
