"""
Pipeline Errors
===============

Exception hierarchy raised by the state machine, adapters, queue and
enrichment path. Item-level errors are recorded on the item by the
processor; run-level errors pause the run and surface to operators.
"""

from __future__ import annotations


class CatalogPipelineError(Exception):
    """Base class for all pipeline errors."""


class ScopeBusyError(CatalogPipelineError):
    """Raised when a scope already has an active run."""

    def __init__(self, kind: str, scope: str, run_id: str) -> None:
        self.kind = kind
        self.scope = scope
        self.run_id = run_id
        super().__init__(f"Scope '{scope}' already has an active {kind} run ({run_id})")


class RunNotFoundError(CatalogPipelineError):
    """Raised when a run cannot be found."""


class QueueDisabledError(CatalogPipelineError):
    """Raised when queue-backed dispatch is requested but the queue is unavailable."""


class QueueEnqueueError(CatalogPipelineError):
    """Raised when one or more jobs could not be enqueued."""

    def __init__(self, failed: int) -> None:
        self.failed = failed
        super().__init__(f"Failed to enqueue {failed} jobs")


class AdapterError(CatalogPipelineError):
    """Raised when a fetched product cannot be turned into a usable record."""


class EnrichmentError(CatalogPipelineError):
    """Raised when LLM output cannot be validated against the schema or taxonomy."""


class AssetError(CatalogPipelineError):
    """Raised when a single asset cannot be fetched or stored."""


class ScopeNotFoundError(CatalogPipelineError):
    """Raised when a run scope (e.g. a brand) does not exist or cannot be crawled."""


class InvalidModelOutputError(EnrichmentError):
    """The model's output could not be parsed or did not match the response schema."""
