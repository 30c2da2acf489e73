"""
Item Processor Module
=====================

Processes a single item through claim -> handle -> complete/fail, then
runs the after-item maintenance (sweep, finalize, optional queue
refill). Shared by the queue worker and the drain loop.

This is the only place item-level exceptions are caught.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx
from sqlalchemy.orm import Session

from catalog_pipeline.core.enums import ItemStatus, RunStatus
from catalog_pipeline.core.errors import CatalogPipelineError
from catalog_pipeline.core.schema import ItemResult
from catalog_pipeline.db.repositories import WorkRef
from catalog_pipeline.pipeline.base import Pipeline, WorkItem

if TYPE_CHECKING:
    from catalog_pipeline.pipeline.queue import WorkQueue

logger = logging.getLogger(__name__)

# Failures with these types are routine (network, validation); anything
# else is logged with a traceback.
EXPECTED_ERRORS = (CatalogPipelineError, httpx.HTTPError, ValueError)


def finalize_run(pipeline: Pipeline, session: Session, run_id: str) -> RunStatus | None:
    """Finalize a run and fire the handler hook when it closes."""
    repo = pipeline.repository(session)
    status = repo.finalize(run_id)
    if status is not None:
        run = repo.require_run(run_id)
        logger.info(f"{pipeline.kind.value} run {run_id} finalized as {status.value}")
        pipeline.handler.on_finalize(session, run_id, run.scope, status)
    return status


async def process_item(
    pipeline: Pipeline,
    item_id: str,
    queue: WorkQueue | None = None,
    enqueue_more: bool = False,
) -> ItemResult:
    """
    Process one item.

    Args:
        pipeline: Pipeline the item belongs to
        item_id: Item ID
        queue: Work queue used to refill after the item (optional)
        enqueue_more: Enqueue more claimable items afterwards

    Returns:
        ItemResult describing what happened
    """
    with pipeline.session() as session:
        repo = pipeline.repository(session)
        item = repo.get_item(item_id)
        if item is None:
            return ItemResult(item_id=item_id, status="not_found")

        run = repo.require_run(item.run_id)
        if run.status != RunStatus.PROCESSING.value:
            if item.status in (ItemStatus.QUEUED.value, ItemStatus.IN_PROGRESS.value):
                repo.reset_item_pending(item_id)
            return ItemResult(item_id=item_id, status="skipped", reason=run.status)
        if item.status == ItemStatus.COMPLETED.value:
            return ItemResult(item_id=item_id, status="skipped", reason="already_completed")
        if item.attempts >= pipeline.config.max_attempts:
            return ItemResult(item_id=item_id, status="skipped", reason="max_attempts")
        if not repo.claim_for_processing(item_id):
            return ItemResult(item_id=item_id, status="skipped", reason="already_claimed")

        work = WorkItem(
            item_id=item.id,
            run_id=run.id,
            scope=run.scope,
            ref=WorkRef(
                url=item.ref_url,
                external_id=item.ref_external_id,
                handle=item.ref_handle,
                product_id=item.product_id,
            ),
            attempts=item.attempts + 1,
        )

    stages: list[str] = []
    try:
        with pipeline.session() as session:
            outcome = await pipeline.handler.handle(session, work, stages.append)
    except Exception as e:
        stage = stages[-1] if stages else None
        message = str(e) or e.__class__.__name__
        if isinstance(e, EXPECTED_ERRORS):
            logger.warning(f"{pipeline.kind.value} item {work.label} failed at {stage}: {message}")
        else:
            logger.exception(f"{pipeline.kind.value} item {work.label} failed at {stage}")
        _record_failure(pipeline, work, message, stage)
        result = ItemResult(item_id=item_id, status="failed", stage=stage, error=message)
    else:
        stage = outcome.stage or (stages[-1] if stages else None)
        with pipeline.session() as session:
            repo = pipeline.repository(session)
            repo.complete_item(item_id, stage=stage, result=outcome.result)
            repo.record_item_success(work.run_id, work.label, stage)
        result = ItemResult(
            item_id=item_id, status="completed", stage=stage, result=outcome.result
        )

    await after_item(pipeline, work.run_id, queue=queue, enqueue_more=enqueue_more)
    return result


def _record_failure(pipeline: Pipeline, work: WorkItem, message: str, stage: str | None) -> None:
    with pipeline.session() as session:
        repo = pipeline.repository(session)
        repo.fail_item(work.item_id, message, stage=stage)
        errors = repo.record_item_failure(work.run_id, work.label, stage, message)

        limit = pipeline.config.consecutive_error_limit
        if pipeline.config.auto_pause_on_errors and errors >= limit:
            reason = f"consecutive_errors:{errors}"
            repo.set_status(work.run_id, RunStatus.PAUSED, block_reason=reason, last_error=message)
            logger.warning(f"{pipeline.kind.value} run {work.run_id} auto-paused ({reason})")


async def after_item(
    pipeline: Pipeline,
    run_id: str,
    queue: WorkQueue | None = None,
    enqueue_more: bool = False,
) -> None:
    """Sweep, try to finalize and optionally refill the queue for a run."""
    config = pipeline.config
    to_enqueue: list[str] = []
    with pipeline.session() as session:
        repo = pipeline.repository(session)
        run = repo.get_run(run_id)
        if run is None or run.status != RunStatus.PROCESSING.value:
            return
        repo.sweep_stale(run_id, config.queued_stale_ms, config.stuck_ms)
        if finalize_run(pipeline, session, run_id) is not None:
            return
        if enqueue_more and queue is not None and queue.is_enabled():
            ids = [item.id for item in repo.list_claimable(run_id, limit=config.enqueue_limit)]
            to_enqueue = repo.mark_queued(ids)

    if to_enqueue and queue is not None:
        await queue.enqueue(to_enqueue)
