"""
Run Dispatcher Module
=====================

Starts, resumes, pauses and stops runs for a scope, and hands claimable
items to the work queue and/or the drain loop.
"""

from __future__ import annotations

import logging

from catalog_pipeline.core.enums import RunStatus
from catalog_pipeline.core.errors import QueueDisabledError, RunNotFoundError
from catalog_pipeline.core.schema import (
    DrainRequest,
    DrainResult,
    ItemResult,
    RunSummary,
    StartRunRequest,
)
from catalog_pipeline.pipeline.base import Pipeline
from catalog_pipeline.pipeline.drain import drain_active_runs, drain_run
from catalog_pipeline.pipeline.processor import finalize_run, process_item
from catalog_pipeline.pipeline.queue import WorkQueue

logger = logging.getLogger(__name__)

QUEUE_DISABLED_REASON = "queue_disabled"


class RunDispatcher:
    """Run-level operations for one pipeline kind."""

    def __init__(self, pipeline: Pipeline, queue: WorkQueue | None = None) -> None:
        self.pipeline = pipeline
        self.queue = queue if queue is not None else WorkQueue(pipeline.kind)

    async def start(self, request: StartRunRequest) -> RunSummary:
        """
        Start a run for a scope, or resume its active run.

        An active run in processing is returned as is unless resume is
        requested. A paused/stopped/blocked run is resumed with a forced
        sweep: queued items are left claimable and in-progress items
        older than resume_stuck_ms are reclaimed.

        Raises:
            QueueDisabledError: If use_queue is set and the queue is disabled
        """
        config = self.pipeline.config
        scope = request.scope

        if request.use_queue and not self.queue.is_enabled():
            with self.pipeline.session() as session:
                repo = self.pipeline.repository(session)
                active = repo.find_active_run(scope)
                if active is not None:
                    repo.set_status(
                        active.id,
                        RunStatus.PAUSED,
                        block_reason=QUEUE_DISABLED_REASON,
                        last_error=QUEUE_DISABLED_REASON,
                    )
            raise QueueDisabledError(f"{self.pipeline.kind.value} queue is disabled")

        with self.pipeline.session() as session:
            repo = self.pipeline.repository(session)
            active = repo.find_active_run(scope)
            if active is not None:
                run_id = active.id
                if active.status != RunStatus.PROCESSING.value or request.resume:
                    repo.resume_run(run_id)
                    repo.sweep_stale(run_id, 0, min(config.stuck_ms, config.resume_stuck_ms))
                    logger.info(f"Resumed {self.pipeline.kind.value} run {run_id} for {scope}")
                elif not request.drain_batch and not request.use_queue:
                    return repo.summarize(run_id)
            else:
                run_id = None

        if run_id is None:
            run_id = await self._create_run(request)

        if request.use_queue:
            await self.enqueue(run_id)
        if request.drain_batch:
            await drain_run(
                self.pipeline,
                run_id,
                batch=request.drain_batch,
                concurrency=request.drain_concurrency,
                max_ms=request.drain_max_ms,
            )

        with self.pipeline.session() as session:
            return self.pipeline.repository(session).summarize(run_id)

    async def _create_run(self, request: StartRunRequest) -> str:
        with self.pipeline.session() as session:
            limit = request.batch_size
            refs = await self.pipeline.handler.discover(session, request.scope, limit)
            if limit:
                refs = refs[:limit]
            repo = self.pipeline.repository(session)
            run = repo.create_run(
                request.scope, refs, metadata=self.pipeline.handler.run_metadata(request.scope)
            )
            logger.info(
                f"Created {self.pipeline.kind.value} run {run.id} for {request.scope} "
                f"with {len(refs)} items"
            )
            if not refs:
                finalize_run(self.pipeline, session, run.id)
            return run.id

    async def enqueue(self, run_id: str, limit: int | None = None) -> int:
        """
        Sweep the run, move claimable items to queued and enqueue them.

        Returns:
            Number of items handed to the queue
        """
        config = self.pipeline.config
        with self.pipeline.session() as session:
            repo = self.pipeline.repository(session)
            repo.require_run(run_id)
            repo.sweep_stale(run_id, config.queued_stale_ms, config.stuck_ms)
            ids = [item.id for item in repo.list_claimable(run_id, limit=limit or config.enqueue_limit)]
            moved = repo.mark_queued(ids)
        if not moved:
            return 0
        await self.queue.enqueue(moved)
        return len(moved)

    def pause(self, scope: str) -> RunSummary:
        """Pause the active run of a scope; in-flight items still finish."""
        return self._set_active_status(scope, RunStatus.PAUSED)

    def stop(self, scope: str) -> RunSummary:
        """Stop the active run of a scope."""
        return self._set_active_status(scope, RunStatus.STOPPED)

    def _set_active_status(self, scope: str, status: RunStatus) -> RunSummary:
        with self.pipeline.session() as session:
            repo = self.pipeline.repository(session)
            active = repo.find_active_run(scope)
            if active is None:
                raise RunNotFoundError(f"No active {self.pipeline.kind.value} run for {scope}")
            repo.set_status(active.id, status)
            logger.info(f"{status.value.capitalize()} {self.pipeline.kind.value} run {active.id}")
            return repo.summarize(active.id)

    def state(self, scope: str) -> RunSummary:
        """Summary of the latest run for a scope."""
        with self.pipeline.session() as session:
            repo = self.pipeline.repository(session)
            run = repo.find_latest_run(scope)
            if run is None:
                raise RunNotFoundError(f"No {self.pipeline.kind.value} run for {scope}")
            return repo.summarize(run.id)

    async def drain(self, request: DrainRequest) -> DrainResult:
        """
        Drain one run (run_id), the active run of a scope, or up to
        max_runs active runs.

        Raises:
            RunNotFoundError: If run_id does not exist
        """
        if request.run_id:
            with self.pipeline.session() as session:
                self.pipeline.repository(session).require_run(request.run_id)
            return await drain_run(
                self.pipeline,
                request.run_id,
                batch=request.batch,
                concurrency=request.concurrency,
                max_ms=request.max_ms,
            )
        return await drain_active_runs(
            self.pipeline,
            scope=request.scope,
            max_runs=1 if request.scope else request.max_runs,
            batch=request.batch,
            concurrency=request.concurrency,
            max_ms=request.max_ms,
        )

    async def process(self, item_id: str) -> ItemResult:
        """Process one item, refilling the queue afterwards when it is enabled."""
        use_queue = self.queue.is_enabled()
        return await process_item(
            self.pipeline,
            item_id,
            queue=self.queue if use_queue else None,
            enqueue_more=use_queue,
        )
