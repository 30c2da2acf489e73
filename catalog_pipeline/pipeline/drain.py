"""
Drain Loop Module
=================

Time-boxed, bounded-concurrency synchronous processing of a run's
claimable items. Used by the trigger API and the CLI when no queue
worker is available, or to make progress inside a request.
"""

from __future__ import annotations

import asyncio
import logging
import time

from catalog_pipeline.core.enums import RunStatus
from catalog_pipeline.core.schema import DrainResult
from catalog_pipeline.pipeline.base import Pipeline
from catalog_pipeline.pipeline.processor import finalize_run, process_item

logger = logging.getLogger(__name__)

# Deadlines shorter than this would not fit a single network-bound item
MIN_DRAIN_MS = 1000

# Stop after this many consecutive rounds where nothing completed or failed
MAX_IDLE_ROUNDS = 2


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def drain_run(
    pipeline: Pipeline,
    run_id: str,
    batch: int | None = None,
    concurrency: int | None = None,
    max_ms: int | None = None,
) -> DrainResult:
    """
    Drain one run.

    Each round sweeps stale/stuck items, lists up to `concurrency`
    runnable items and processes them concurrently. The loop stops when
    `batch` items have been processed (0 = unlimited), the deadline
    passes, the run leaves processing, nothing is runnable, or two
    rounds in a row make no progress. The deadline is checked between
    rounds.

    Args:
        pipeline: Pipeline the run belongs to
        run_id: Run ID
        batch: Maximum items to process (defaults to config)
        concurrency: Items processed at once (defaults to config)
        max_ms: Wall-clock budget in milliseconds (defaults to config)

    Returns:
        DrainResult with counters and the final run summary
    """
    config = pipeline.config
    batch = config.drain_batch if batch is None else batch
    concurrency = max(1, concurrency or config.drain_concurrency)
    max_ms = max(MIN_DRAIN_MS, config.drain_max_ms if max_ms is None else max_ms)

    started = time.monotonic()
    result = DrainResult(runs=[run_id])
    idle_rounds = 0

    while (batch <= 0 or result.processed < batch) and _elapsed_ms(started) < max_ms:
        with pipeline.session() as session:
            repo = pipeline.repository(session)
            run = repo.get_run(run_id)
            if run is None or run.status != RunStatus.PROCESSING.value:
                break
            repo.sweep_stale(run_id, config.queued_stale_ms, config.stuck_ms)
            limit = concurrency if batch <= 0 else min(concurrency, batch - result.processed)
            item_ids = [item.id for item in repo.list_runnable(run_id, limit=limit)]
            if not item_ids:
                finalize_run(pipeline, session, run_id)
                break

        outcomes = await asyncio.gather(
            *(process_item(pipeline, item_id) for item_id in item_ids),
            return_exceptions=True,
        )

        progressed = 0
        for outcome in outcomes:
            result.processed += 1
            if isinstance(outcome, BaseException):
                logger.error(f"Drain of run {run_id} hit an unexpected error: {outcome!r}")
                result.failed += 1
                progressed += 1
            elif outcome.status == "completed":
                result.completed += 1
                progressed += 1
            elif outcome.status == "failed":
                result.failed += 1
                progressed += 1
            else:
                result.skipped += 1

        if progressed:
            idle_rounds = 0
        else:
            idle_rounds += 1
            if idle_rounds >= MAX_IDLE_ROUNDS:
                break

    result.elapsed_ms = _elapsed_ms(started)
    with pipeline.session() as session:
        repo = pipeline.repository(session)
        if repo.get_run(run_id) is not None:
            result.summaries.append(repo.summarize(run_id))

    logger.info(
        f"Drained {pipeline.kind.value} run {run_id}: processed={result.processed} "
        f"completed={result.completed} failed={result.failed} skipped={result.skipped} "
        f"in {result.elapsed_ms}ms"
    )
    return result


async def drain_active_runs(
    pipeline: Pipeline,
    scope: str | None = None,
    max_runs: int = 1,
    batch: int | None = None,
    concurrency: int | None = None,
    max_ms: int | None = None,
) -> DrainResult:
    """
    Drain up to max_runs processing runs, least recently touched first.

    The wall-clock budget is shared: each run gets what is left of it.
    """
    config = pipeline.config
    budget = max(MIN_DRAIN_MS, config.drain_max_ms if max_ms is None else max_ms)
    started = time.monotonic()

    with pipeline.session() as session:
        run_ids = [run.id for run in pipeline.repository(session).list_active_runs(max_runs, scope)]

    total = DrainResult()
    for run_id in run_ids:
        remaining = budget - _elapsed_ms(started)
        if remaining <= 0:
            break
        drained = await drain_run(
            pipeline, run_id, batch=batch, concurrency=concurrency, max_ms=remaining
        )
        total.runs.append(run_id)
        total.processed += drained.processed
        total.completed += drained.completed
        total.failed += drained.failed
        total.skipped += drained.skipped
        total.summaries.extend(drained.summaries)

    total.elapsed_ms = _elapsed_ms(started)
    return total
