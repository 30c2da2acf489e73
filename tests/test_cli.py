"""Tests for the command line interface."""

import tempfile
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from catalog_pipeline.cli.main import app
from catalog_pipeline.config import PipelineConfig
from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.db.engine import get_engine, init_db, reset_engine
from catalog_pipeline.db.repositories import WorkRef
from catalog_pipeline.pipeline.base import ItemHandler, ItemOutcome, Pipeline
from catalog_pipeline.pipeline.dispatcher import RunDispatcher
from catalog_pipeline.pipeline.queue import WorkQueue

runner = CliRunner()


class StubHandler(ItemHandler):
    """Handler with two refs that always succeeds."""

    async def discover(self, session, scope, limit):
        return [WorkRef(url=f"https://acme.co/products/p{i}") for i in range(2)]

    async def handle(self, session, item, report_stage):
        report_stage("upsert")
        return ItemOutcome()


class DisabledQueue(WorkQueue):
    """Queue that is never available."""

    def is_enabled(self) -> bool:
        return False


@pytest.fixture
def database(monkeypatch):
    """Point the global engine at a temporary database."""
    with tempfile.TemporaryDirectory() as tmpdir:
        monkeypatch.setenv("DATABASE_URL", str(Path(tmpdir) / "test.db"))
        reset_engine()
        init_db()
        yield
        reset_engine()


@pytest.fixture
def dispatcher(database, monkeypatch) -> RunDispatcher:
    """Dispatcher used by the runs commands."""
    pipeline = Pipeline(
        PipelineKind.CATALOG,
        StubHandler(),
        PipelineConfig(kind=PipelineKind.CATALOG),
        sessionmaker(bind=get_engine()),
    )
    dispatcher = RunDispatcher(pipeline, DisabledQueue(PipelineKind.CATALOG))
    monkeypatch.setattr("catalog_pipeline.cli.runs._dispatcher", lambda kind: dispatcher)
    return dispatcher


class TestBasicCommands:
    """Tests for version, adapters and worker."""

    def test_version(self) -> None:
        """Test the version command."""
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "Catalog Pipeline v" in result.output

    def test_adapters_list(self) -> None:
        """Test listing adapters."""
        result = runner.invoke(app, ["adapters", "list"])
        assert result.exit_code == 0
        assert "shopify" in result.output
        assert "vtex" in result.output

    def test_worker_requires_redis(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that the worker refuses to start without Redis."""
        monkeypatch.delenv("REDIS_URL", raising=False)
        result = runner.invoke(app, ["worker"])
        assert result.exit_code == 1
        assert "REDIS_URL" in result.output


class TestBrandCommands:
    """Tests for the brands commands."""

    def test_add_and_list(self, database) -> None:
        """Test registering and listing a brand."""
        result = runner.invoke(
            app, ["brands", "add", "Acme", "--url", "https://acme.co", "--platform", "shopify"]
        )
        assert result.exit_code == 0
        assert "Brand created" in result.output

        result = runner.invoke(app, ["brands", "list"])
        assert result.exit_code == 0
        assert "Acme" in result.output
        assert "shopify" in result.output

    def test_add_duplicate(self, database) -> None:
        """Test that slugs are unique."""
        runner.invoke(app, ["brands", "add", "Acme", "--url", "https://acme.co"])
        result = runner.invoke(app, ["brands", "add", "ACME", "--url", "https://acme.co"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_list_empty(self, database) -> None:
        """Test listing without brands."""
        result = runner.invoke(app, ["brands", "list"])
        assert result.exit_code == 0
        assert "No brands registered" in result.output


class TestRunCommands:
    """Tests for the runs commands."""

    def test_start_and_status(self, dispatcher: RunDispatcher) -> None:
        """Test starting a run and reading its state."""
        result = runner.invoke(app, ["runs", "start", "brand-1"])
        assert result.exit_code == 0
        assert "processing" in result.output

        result = runner.invoke(app, ["runs", "status", "brand-1"])
        assert result.exit_code == 0
        assert "brand-1" in result.output

    def test_start_with_drain(self, dispatcher: RunDispatcher) -> None:
        """Test draining from the start command."""
        result = runner.invoke(app, ["runs", "start", "brand-1", "--drain", "5"])
        assert result.exit_code == 0
        assert "completed" in result.output

    def test_start_with_disabled_queue(self, dispatcher: RunDispatcher) -> None:
        """Test the error path of the start command."""
        result = runner.invoke(app, ["runs", "start", "brand-1", "--queue"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_drain(self, dispatcher: RunDispatcher) -> None:
        """Test the drain command."""
        runner.invoke(app, ["runs", "start", "brand-1"])
        result = runner.invoke(app, ["runs", "drain", "--scope", "brand-1"])
        assert result.exit_code == 0
        assert "Processed: 2" in result.output

    def test_pause_and_stop(self, dispatcher: RunDispatcher) -> None:
        """Test pausing and stopping."""
        runner.invoke(app, ["runs", "start", "brand-1"])
        assert "paused" in runner.invoke(app, ["runs", "pause", "brand-1"]).output
        assert "stopped" in runner.invoke(app, ["runs", "stop", "brand-1"]).output

    def test_status_without_run(self, dispatcher: RunDispatcher) -> None:
        """Test status for a scope without runs."""
        result = runner.invoke(app, ["runs", "status", "brand-9"])
        assert result.exit_code == 1
