"""Enums shared by the run/item state machine and the enrichment path."""

from enum import Enum


class PipelineKind(str, Enum):
    """Batch pipelines that share the generic run/item tables."""

    CATALOG = "catalog"
    ENRICHMENT = "enrichment"


class RunStatus(str, Enum):
    """Lifecycle status of a run."""

    PROCESSING = "processing"
    PAUSED = "paused"
    STOPPED = "stopped"
    BLOCKED = "blocked"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"


# A scope can hold at most one run in any of these statuses.
ACTIVE_RUN_STATUSES = (
    RunStatus.PROCESSING,
    RunStatus.PAUSED,
    RunStatus.STOPPED,
    RunStatus.BLOCKED,
)


class ItemStatus(str, Enum):
    """Lifecycle status of a single work item."""

    PENDING = "pending"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class StockStatus(str, Enum):
    """Normalized variant availability."""

    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"


class SignalStrength(str, Enum):
    """How much the harvested text signals agree with each other."""

    STRONG = "strong"
    MODERATE = "moderate"
    WEAK = "weak"


class RouteConfidence(str, Enum):
    """Confidence of the pre-classifier routing decision."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class IssueSeverity(str, Enum):
    """Severity of a consistency issue."""

    ERROR = "error"
    WARNING = "warning"
