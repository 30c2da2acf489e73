"""Tests for the run trigger API."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from catalog_pipeline.config import PipelineConfig
from catalog_pipeline.core.enums import PipelineKind
from catalog_pipeline.db.engine import reset_engine
from catalog_pipeline.db.models import Base, ItemDB
from catalog_pipeline.db.repositories import RunRepository, WorkRef
from catalog_pipeline.pipeline.base import ItemHandler, ItemOutcome, Pipeline
from catalog_pipeline.pipeline.dispatcher import RunDispatcher
from catalog_pipeline.pipeline.queue import WorkQueue
from catalog_pipeline.web.dependencies import get_dispatcher


class StubHandler(ItemHandler):
    """Handler discovering a fixed number of refs and completing every item."""

    def __init__(self, session_factory, count: int = 2, race: bool = False) -> None:
        self.session_factory = session_factory
        self.count = count
        self.race = race

    async def discover(self, session, scope, limit):
        if self.race:
            # Another caller creates a run for the same scope meanwhile
            other = self.session_factory()
            try:
                RunRepository(other, PipelineKind.CATALOG).create_run(scope, [])
                other.commit()
            finally:
                other.close()
        return [WorkRef(url=f"https://shop.example/products/p{i}") for i in range(self.count)]

    async def handle(self, session, item, report_stage):
        report_stage("upsert")
        await asyncio.sleep(0)
        return ItemOutcome(result={"url": item.ref.url})


class DisabledQueue(WorkQueue):
    """Queue that is never available."""

    def is_enabled(self) -> bool:
        return False


@pytest.fixture
def temp_db_path():
    """Create a temporary database file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir) / "test.db"


@pytest.fixture
def session_factory(temp_db_path):
    """Session factory bound to a fresh database."""
    engine = create_engine(
        f"sqlite:///{temp_db_path}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine)
    engine.dispose()


@pytest.fixture
def handler(session_factory) -> StubHandler:
    """Handler shared by the catalog dispatcher."""
    return StubHandler(session_factory)


@pytest.fixture
def client(session_factory, handler, temp_db_path, monkeypatch):
    """Create a test client whose dispatchers use the test database."""
    monkeypatch.setenv("DATABASE_URL", str(temp_db_path))
    reset_engine()
    # Also mock the init_db in app creation to prevent it from creating another DB
    monkeypatch.setattr("catalog_pipeline.web.app.init_db", lambda: None)

    from catalog_pipeline.web.app import create_app

    dispatchers = {
        kind: RunDispatcher(
            Pipeline(kind, handler, PipelineConfig(kind=kind), session_factory),
            DisabledQueue(kind),
        )
        for kind in PipelineKind
    }

    def override_dispatcher(kind: PipelineKind) -> RunDispatcher:
        return dispatchers[kind]

    app = create_app()
    app.dependency_overrides[get_dispatcher] = override_dispatcher
    yield TestClient(app)
    reset_engine()


class TestStartRoute:
    """Tests for POST /api/runs/{kind}/start."""

    def test_start_creates_run(self, client: TestClient) -> None:
        """Test creating a run."""
        response = client.post("/api/runs/catalog/start", json={"scope": "brand-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["kind"] == "catalog"
        assert data["scope"] == "brand-1"
        assert data["status"] == "processing"
        assert data["total"] == 2

    def test_start_with_drain(self, client: TestClient) -> None:
        """Test draining inside the request."""
        response = client.post(
            "/api/runs/enrichment/start", json={"scope": "all", "drain_batch": 5}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["completed"] == 2

    def test_start_twice_returns_same_run(self, client: TestClient) -> None:
        """Test that an active run is returned instead of a new one."""
        first = client.post("/api/runs/catalog/start", json={"scope": "brand-1"}).json()
        second = client.post("/api/runs/catalog/start", json={"scope": "brand-1"}).json()
        assert first["run_id"] == second["run_id"]

    def test_start_race_conflict(self, client: TestClient, handler: StubHandler) -> None:
        """Test the 409 response when another run wins the scope."""
        handler.race = True
        response = client.post("/api/runs/catalog/start", json={"scope": "brand-1"})

        assert response.status_code == 409
        data = response.json()
        assert "already has an active catalog run" in data["detail"]
        assert data["run"]["scope"] == "brand-1"
        assert data["run"]["total"] == 0

    def test_start_with_disabled_queue(self, client: TestClient) -> None:
        """Test the 503 response when the queue is unavailable."""
        response = client.post(
            "/api/runs/catalog/start", json={"scope": "brand-1", "use_queue": True}
        )
        assert response.status_code == 503

    def test_start_validation(self, client: TestClient) -> None:
        """Test request validation."""
        assert client.post("/api/runs/catalog/start", json={"scope": ""}).status_code == 422
        assert client.post("/api/runs/catalog/start", json={}).status_code == 422
        response = client.post("/api/runs/catalog/start", json={"scope": "b", "batch_size": 0})
        assert response.status_code == 422

    def test_unknown_kind(self, client: TestClient) -> None:
        """Test a kind that is not a pipeline."""
        response = client.post("/api/runs/images/start", json={"scope": "brand-1"})
        assert response.status_code == 422


class TestRunRoutes:
    """Tests for the drain, pause, stop, state and process routes."""

    def test_state_not_found(self, client: TestClient) -> None:
        """Test state for a scope without runs."""
        response = client.get("/api/runs/catalog/state", params={"scope": "brand-1"})
        assert response.status_code == 404

    def test_pause_stop_and_state(self, client: TestClient) -> None:
        """Test pausing, stopping and reading the state."""
        client.post("/api/runs/catalog/start", json={"scope": "brand-1"})

        assert client.post("/api/runs/catalog/pause", json={"scope": "brand-1"}).json()[
            "status"
        ] == "paused"
        assert client.post("/api/runs/catalog/stop", json={"scope": "brand-1"}).json()[
            "status"
        ] == "stopped"
        state = client.get("/api/runs/catalog/state", params={"scope": "brand-1"})
        assert state.status_code == 200
        assert state.json()["status"] == "stopped"

    def test_pause_without_run(self, client: TestClient) -> None:
        """Test pausing a scope with no active run."""
        response = client.post("/api/runs/catalog/pause", json={"scope": "brand-1"})
        assert response.status_code == 404

    def test_drain(self, client: TestClient) -> None:
        """Test draining the active run of a scope."""
        client.post("/api/runs/catalog/start", json={"scope": "brand-1"})
        response = client.post("/api/runs/catalog/drain", json={"scope": "brand-1"})

        assert response.status_code == 200
        data = response.json()
        assert data["processed"] == 2
        assert data["completed"] == 2
        assert data["summaries"][0]["status"] == "completed"

    def test_drain_unknown_run(self, client: TestClient) -> None:
        """Test draining a run that does not exist."""
        response = client.post("/api/runs/catalog/drain", json={"run_id": "missing"})
        assert response.status_code == 404

    def test_process_item(self, client: TestClient, session_factory) -> None:
        """Test processing a single item."""
        run_id = client.post("/api/runs/catalog/start", json={"scope": "brand-1"}).json()["run_id"]
        session = session_factory()
        item_id = session.query(ItemDB).filter_by(run_id=run_id).first().id
        session.close()

        response = client.post(f"/api/runs/catalog/items/{item_id}/process")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["stage"] == "upsert"

    def test_process_unknown_item(self, client: TestClient) -> None:
        """Test processing an item that does not exist."""
        response = client.post("/api/runs/catalog/items/missing/process")
        assert response.status_code == 200
        assert response.json()["status"] == "not_found"


class TestAdapterRoutes:
    """Tests for GET /api/adapters."""

    def test_list_adapters(self, client: TestClient) -> None:
        """Test the adapter listing."""
        response = client.get("/api/adapters")

        assert response.status_code == 200
        data = response.json()
        names = {adapter["name"] for adapter in data["adapters"]}
        assert {"shopify", "woocommerce", "vtex", "custom"} <= names
        assert data["fallback"] == "custom"
