"""Normalized data model shared by every pipeline stage."""

import uuid
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from typing import Any

FAILURE_LEVELS = ("ERROR", "FAILED")

SEVERITY_HIGH = "High"
SEVERITY_MEDIUM = "Medium"
SEVERITY_LOW = "Low"
SEVERITY_RANK = {SEVERITY_HIGH: 0, SEVERITY_MEDIUM: 1, SEVERITY_LOW: 2}


@dataclass
class LogEvent:
    timestamp: str
    level: str
    component: str
    message: str
    operation: str | None = None
    target: str | None = None
    result: str | None = None


@dataclass
class Modification:
    type: str
    action: str
    target: str
    category: str
    timestamp: str | None = None


@dataclass
class TaskDetail:
    type: str  # "TaskStart", "TaskComplete", "TaskProgress"
    task: str
    timestamp: str | None = None
    duration_seconds: float | None = None
    count: int | None = None
    unit: str | None = None


@dataclass
class DurationSample:
    operation: str
    seconds: float


@dataclass
class OperationCount:
    operation: str
    count: int


@dataclass
class ErrorRecord:
    module: str
    timestamp: str
    level: str
    component: str
    message: str
    severity: str


@dataclass
class ModuleMetrics:
    total_operations: int = 0
    successful_operations: int = 0
    failed_operations: int = 0
    warning_count: int = 0
    start_time: str | None = None
    end_time: str | None = None
    duration_seconds: float = 0.0
    success_rate: float = 0.0
    detected_count: int = 0
    detection_details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ModuleAnalysis:
    """Everything extracted from one module's execution log and audit snapshot."""

    module: str
    has_log: bool = False
    metrics: ModuleMetrics = field(default_factory=ModuleMetrics)
    modifications: list[Modification] = field(default_factory=list)
    task_details: list[TaskDetail] = field(default_factory=list)
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)
    success_operations: list[LogEvent] = field(default_factory=list)
    durations: list[DurationSample] = field(default_factory=list)
    operation_counts: dict[str, int] = field(default_factory=dict)
    hardening_signal: bool = False
    truncated: bool = False
    timed_out: bool = False
    error: str | None = None

    @property
    def items_processed(self) -> int:
        if self.operation_counts:
            return sum(self.operation_counts.values())
        return len(self.modifications)


@dataclass
class AuditSummary:
    module: str
    detected_count: int = 0
    categories: dict[str, float] = field(default_factory=dict)
    health_score: float | None = None
    source: str | None = None
    from_default: bool = True
    error: str | None = None


@dataclass
class ModuleResult:
    """Per-module output of the analysis stage: log analysis plus audit data."""

    module: str
    analysis: ModuleAnalysis
    audit: AuditSummary
    audit_data: Any = None


@dataclass
class MaintenanceLogSummary:
    total_lines: int = 0
    unparsed_lines: int = 0
    level_counts: dict[str, int] = field(default_factory=dict)
    errors: list[ErrorRecord] = field(default_factory=list)
    warnings: list[ErrorRecord] = field(default_factory=list)


@dataclass
class TaskResult:
    module: str
    success: bool
    duration_seconds: float = 0.0


@dataclass
class DashboardMetrics:
    modules_executed: int = 0
    total_tasks: int = 0
    successful_tasks: int = 0
    failed_tasks: int = 0
    total_duration_seconds: float = 0.0
    items_detected: int = 0
    items_processed: int = 0
    error_count: int = 0
    warning_count: int = 0
    success_rate: float = 0.0
    health_score: int = 0
    security_score: int = 0
    health_factors: dict[str, int] = field(default_factory=dict)
    security_contributors: list[str] = field(default_factory=list)


@dataclass
class ProcessingSession:
    session_id: str
    collection_timestamp: str | None
    processed_at: str

    @classmethod
    def start(cls, collection_timestamp: str | None = None) -> "ProcessingSession":
        return cls(
            session_id=str(uuid.uuid4()),
            collection_timestamp=collection_timestamp,
            processed_at=datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "SessionId": self.session_id,
            "CollectionTimestamp": self.collection_timestamp,
            "ProcessedAt": self.processed_at,
        }


# ---------------------------------------------------------------------------
# JSON shapes
# ---------------------------------------------------------------------------


def _pascal(name: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in name.split("_"))


def to_document(obj: Any) -> Any:
    """Convert dataclasses (possibly nested in lists/dicts) to PascalCase dicts.

    Only dataclass field names are renamed; keys of plain dicts are kept
    as-is since they usually carry data (module names, category names).
    """
    if is_dataclass(obj) and not isinstance(obj, type):
        return {_pascal(f.name): to_document(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, dict):
        return {k: to_document(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_document(v) for v in obj]
    return obj
