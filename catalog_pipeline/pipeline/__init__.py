"""
Batch Pipeline Framework
========================

Generic run/item machinery shared by every pipeline kind:
- base.py: Pipeline, ItemHandler, WorkItem, ItemOutcome
- processor.py: claim -> handle -> complete/fail for one item
- drain.py: time-boxed concurrent draining of runs
- queue.py: arq work queue and worker settings
- dispatcher.py: start/resume/pause/stop of runs
- factory.py: configured pipelines per kind
"""

from catalog_pipeline.pipeline.base import ItemHandler, ItemOutcome, Pipeline, WorkItem
from catalog_pipeline.pipeline.dispatcher import RunDispatcher
from catalog_pipeline.pipeline.drain import drain_active_runs, drain_run
from catalog_pipeline.pipeline.processor import finalize_run, process_item
from catalog_pipeline.pipeline.queue import WorkerSettings, WorkQueue

__all__ = [
    "ItemHandler",
    "ItemOutcome",
    "Pipeline",
    "WorkItem",
    "RunDispatcher",
    "drain_run",
    "drain_active_runs",
    "finalize_run",
    "process_item",
    "WorkQueue",
    "WorkerSettings",
]
