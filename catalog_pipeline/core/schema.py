"""Pydantic v2 models for the run trigger API.

These models define the request and response shapes shared by the
HTTP routes, the CLI and the dispatcher:
- StartRunRequest, DrainRequest (triggers)
- RunSummary, DrainResult, ItemResult (reports)
"""

from datetime import datetime

from pydantic import BaseModel, Field

from catalog_pipeline.core.enums import PipelineKind


class StartRunRequest(BaseModel):
    """Start (or resume) a run for a scope."""

    scope: str = Field(min_length=1)
    batch_size: int | None = Field(default=None, ge=1)
    resume: bool = False
    drain_batch: int | None = Field(default=None, ge=0)
    drain_concurrency: int | None = Field(default=None, ge=1)
    drain_max_ms: int | None = Field(default=None, ge=0)
    use_queue: bool = False


class DrainRequest(BaseModel):
    """Drain one run, the active run of a scope, or all active runs."""

    run_id: str | None = None
    scope: str | None = None
    batch: int | None = Field(default=None, ge=0)
    concurrency: int | None = Field(default=None, ge=1)
    max_ms: int | None = Field(default=None, ge=0)
    max_runs: int = Field(default=1, ge=1)


class ScopeRequest(BaseModel):
    """Target the active run of a scope."""

    scope: str = Field(min_length=1)


class RunSummary(BaseModel):
    """Live aggregate view of a run, computed from its items."""

    run_id: str
    kind: PipelineKind
    scope: str
    status: str
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    queued: int = 0
    in_progress: int = 0
    last_error: str | None = None
    block_reason: str | None = None
    last_stage: str | None = None
    last_ref: str | None = None
    consecutive_errors: int = 0
    started_at: datetime | None = None
    updated_at: datetime | None = None
    finished_at: datetime | None = None


class ItemResult(BaseModel):
    """Outcome of one process_item call."""

    item_id: str
    status: str  # completed/failed/skipped/not_found
    reason: str | None = None
    stage: str | None = None
    error: str | None = None
    result: dict | None = None


class DrainResult(BaseModel):
    """Counters reported by a drain invocation."""

    runs: list[str] = Field(default_factory=list)
    processed: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_ms: int = 0
    summaries: list[RunSummary] = Field(default_factory=list)
