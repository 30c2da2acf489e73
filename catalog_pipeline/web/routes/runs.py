"""Run trigger routes: start, drain, pause, stop, state and single-item processing."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from catalog_pipeline.core.errors import RunNotFoundError, ScopeBusyError
from catalog_pipeline.core.schema import (
    DrainRequest,
    DrainResult,
    ItemResult,
    RunSummary,
    ScopeRequest,
    StartRunRequest,
)
from catalog_pipeline.pipeline.dispatcher import RunDispatcher
from catalog_pipeline.web.dependencies import get_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/runs/{kind}", tags=["runs"])


@router.post("/start", response_model=RunSummary)
async def start_run(
    request: StartRunRequest,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
):
    """
    Start a run for a scope, or resume its active run.

    A concurrent start that loses the race for the scope gets 409 with
    the summary of the run that won.
    """
    try:
        return await dispatcher.start(request)
    except ScopeBusyError as e:
        logger.info(str(e))
        try:
            active = dispatcher.state(request.scope)
        except RunNotFoundError:
            active = None
        return JSONResponse(
            status_code=409,
            content={
                "detail": str(e),
                "run": active.model_dump(mode="json") if active else None,
            },
        )


@router.post("/drain", response_model=DrainResult)
async def drain(
    request: DrainRequest,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> DrainResult:
    """Drain a run, the active run of a scope, or the oldest active runs."""
    return await dispatcher.drain(request)


@router.post("/pause", response_model=RunSummary)
async def pause_run(
    request: ScopeRequest,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> RunSummary:
    """Pause the active run of a scope."""
    return dispatcher.pause(request.scope)


@router.post("/stop", response_model=RunSummary)
async def stop_run(
    request: ScopeRequest,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> RunSummary:
    """Stop the active run of a scope."""
    return dispatcher.stop(request.scope)


@router.get("/state", response_model=RunSummary)
async def run_state(
    scope: str,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> RunSummary:
    """Summary of the latest run for a scope (404 when there is none)."""
    return dispatcher.state(scope)


@router.post("/items/{item_id}/process", response_model=ItemResult)
async def process_item(
    item_id: str,
    dispatcher: RunDispatcher = Depends(get_dispatcher),
) -> ItemResult:
    """Process one item (the queue worker calls the same code path)."""
    return await dispatcher.process(item_id)
