"""Pipeline orchestrator: Scan -> Analyze -> Aggregate -> Export.

Every stage runs through safe_operation with a fallback that substitutes an
empty default, so the run reaches DONE whenever the output directory is
writable. Only failing to establish the output directory ends in FAILED.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from log_aggregator.aggregator import build_error_list, compute_dashboard_metrics
from log_aggregator.analyzer import (
    analyze_module,
    bucket_maintenance_log,
    failed_result,
    timed_out_result,
)
from log_aggregator.batch import BatchRunner, is_error_placeholder
from log_aggregator.config import Config
from log_aggregator.exporter import MODULE_SPECIFIC_DIR, ExportBundle, Exporter
from log_aggregator.loader import load_task_results, read_text
from log_aggregator.models import (
    DashboardMetrics,
    ErrorRecord,
    MaintenanceLogSummary,
    ModuleResult,
    ProcessingSession,
    TaskResult,
)
from log_aggregator.safe_ops import RetryPolicy, safe_operation
from log_aggregator.scanner import ArtifactInventory, discover_artifacts, newest_mtime

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Unrecoverable pipeline failure."""


class OutputDirectoryError(PipelineError):
    """The processed-data directory cannot be created or written."""


class PipelineState(Enum):
    IDLE = "Idle"
    SCANNING_ARTIFACTS = "ScanningArtifacts"
    ANALYZING_MODULES = "AnalyzingModules"
    AGGREGATING = "Aggregating"
    EXPORTING = "Exporting"
    DONE = "Done"
    FAILED = "Failed"


_TRANSITIONS = {
    PipelineState.IDLE: {PipelineState.SCANNING_ARTIFACTS},
    PipelineState.SCANNING_ARTIFACTS: {PipelineState.ANALYZING_MODULES},
    PipelineState.ANALYZING_MODULES: {PipelineState.AGGREGATING},
    PipelineState.AGGREGATING: {PipelineState.EXPORTING},
    PipelineState.EXPORTING: {PipelineState.DONE},
    PipelineState.DONE: set(),
    PipelineState.FAILED: set(),
}


class Deadline:
    """Wall-clock limit for one run."""

    def __init__(self, seconds: float | None, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._expires_at = clock() + seconds if seconds and seconds > 0 else None

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at


@dataclass
class PipelineContext:
    """State for a single invocation; never shared between runs."""

    config: Config
    session: ProcessingSession
    deadline: Deadline
    state: PipelineState = PipelineState.IDLE
    history: list[str] = field(default_factory=lambda: [PipelineState.IDLE.value])
    stage_errors: list[dict[str, str]] = field(default_factory=list)
    inventory: ArtifactInventory = field(default_factory=ArtifactInventory)
    results: list[ModuleResult] = field(default_factory=list)
    task_results: dict[str, TaskResult] = field(default_factory=dict)
    maintenance: MaintenanceLogSummary = field(default_factory=MaintenanceLogSummary)
    dashboard: DashboardMetrics = field(default_factory=DashboardMetrics)
    errors: list[ErrorRecord] = field(default_factory=list)
    timed_out: bool = False

    def transition(self, state: PipelineState) -> None:
        if state != PipelineState.FAILED and state not in _TRANSITIONS[self.state]:
            raise PipelineError(f"Invalid transition {self.state.value} -> {state.value}")
        logger.debug("Pipeline state: %s -> %s", self.state.value, state.value)
        self.state = state
        self.history.append(state.value)


@dataclass
class PipelineResult:
    success: bool
    processed_data_path: str
    type1_count: int = 0
    type2_count: int = 0
    state: PipelineState = PipelineState.IDLE
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "Success": self.success,
            "ProcessedDataPath": self.processed_data_path,
            "ModulesProcessed": {
                "Type1Count": self.type1_count,
                "Type2Count": self.type2_count,
            },
        }


class MaintenancePipeline:
    def __init__(self, config: Config):
        self._config = config
        self._exporter = Exporter(
            config.processed_dir,
            RetryPolicy(config.write_retries, config.write_backoff_seconds),
        )

    # -- stages -------------------------------------------------------------

    def _prepare_output(self, ctx: PipelineContext) -> None:
        target = self._config.processed_dir
        try:
            os.makedirs(os.path.join(target, MODULE_SPECIFIC_DIR), exist_ok=True)
        except OSError as e:
            raise OutputDirectoryError(f"Cannot create output directory {target}: {e}") from e
        if not os.access(target, os.W_OK):
            raise OutputDirectoryError(f"Output directory {target} is not writable")

    def _scan(self, ctx: PipelineContext) -> ArtifactInventory:
        inventory = discover_artifacts(self._config.temp_root, exclude=[self._config.task_results_path])
        paths = list(inventory.snapshots.values()) + list(inventory.execution_logs.values())
        if inventory.maintenance_log:
            paths.append(inventory.maintenance_log)
        ctx.session.collection_timestamp = newest_mtime(paths)
        return inventory

    def _analyze_module(self, ctx: PipelineContext, module: str) -> ModuleResult:
        return analyze_module(
            module,
            ctx.inventory.snapshots.get(module),
            ctx.inventory.execution_logs.get(module),
            self._config.max_log_bytes,
            ctx.deadline.expired,
        )

    def _analyze(self, ctx: PipelineContext) -> list[ModuleResult]:
        modules = ctx.inventory.modules
        remaining = ctx.deadline.remaining()
        if remaining is not None:
            logger.info("Analyzing %d module(s), %.0fs left before deadline", len(modules), remaining)
        runner = BatchRunner(
            batch_size=self._config.batch_size,
            continue_on_error=self._config.continue_on_error,
            max_workers=self._config.worker_count,
        )
        raw = runner.run(modules, lambda module: self._analyze_module(ctx, module), ctx.deadline.expired)

        results = []
        for module, item in zip(modules, raw):
            if is_error_placeholder(item):
                results.append(failed_result(module, item["Error"]))
            else:
                results.append(item)
        for module in modules[len(raw):]:
            results.append(timed_out_result(module))

        if len(raw) < len(modules) or any(r.analysis.timed_out for r in results):
            ctx.timed_out = True
        logger.info("Analyzed %d of %d module(s)", len(raw), len(modules))
        return results

    def _load_maintenance_log(self, ctx: PipelineContext) -> MaintenanceLogSummary:
        path = ctx.inventory.maintenance_log
        if not path:
            return MaintenanceLogSummary()
        return bucket_maintenance_log(read_text(path, self._config.max_log_bytes).text)

    def _load_task_results(self, ctx: PipelineContext) -> dict[str, TaskResult]:
        path = self._config.task_results_path
        if not os.path.isfile(path):
            return {}
        return load_task_results(path)

    def _aggregate(self, ctx: PipelineContext) -> tuple[DashboardMetrics, list[ErrorRecord]]:
        dashboard = compute_dashboard_metrics(ctx.results, ctx.task_results, self._config.security_modules)
        return dashboard, build_error_list(ctx.results)

    def _execution_summary(self, ctx: PipelineContext) -> dict[str, Any]:
        return {
            "State": ctx.state.value,
            "StateHistory": list(ctx.history),
            "ModulesProcessed": {
                "Type1Count": len(ctx.inventory.snapshots),
                "Type2Count": len(ctx.inventory.execution_logs),
            },
            "ModuleCount": len(ctx.results),
            "ExternalTaskResults": len(ctx.task_results),
            "TimedOut": ctx.timed_out,
            "StageErrors": list(ctx.stage_errors),
        }

    def _export(self, ctx: PipelineContext) -> dict:
        bundle = ExportBundle(
            session=ctx.session,
            results=ctx.results,
            dashboard=ctx.dashboard,
            errors=ctx.errors,
            maintenance=ctx.maintenance,
            execution_summary=self._execution_summary(ctx),
        )
        return self._exporter.export_all(bundle)

    # -- driver -------------------------------------------------------------

    def _stage(self, ctx: PipelineContext, name: str, operation, default_factory):
        """Run one stage; on failure record it and substitute the default."""
        result = safe_operation(
            operation, ctx,
            fallback=lambda _ctx: default_factory(),
            name=name,
        )
        if result.fallback_used:
            ctx.stage_errors.append({"Stage": name, "Error": result.error or ""})
        return result.data if result.success else default_factory()

    def run(self) -> PipelineResult:
        ctx = PipelineContext(
            config=self._config,
            session=ProcessingSession.start(),
            deadline=Deadline(self._config.timeout_seconds),
        )
        processed_dir = self._config.processed_dir
        logger.info("Session %s: processing %s", ctx.session.session_id, self._config.temp_root)

        try:
            self._prepare_output(ctx)

            ctx.transition(PipelineState.SCANNING_ARTIFACTS)
            ctx.inventory = self._stage(ctx, "scan", self._scan, ArtifactInventory)

            ctx.transition(PipelineState.ANALYZING_MODULES)
            ctx.results = self._stage(ctx, "analyze", self._analyze, list)
            ctx.maintenance = self._stage(ctx, "maintenance-log", self._load_maintenance_log, MaintenanceLogSummary)
            ctx.task_results = self._stage(ctx, "task-results", self._load_task_results, dict)

            ctx.transition(PipelineState.AGGREGATING)
            ctx.dashboard, ctx.errors = self._stage(
                ctx, "aggregate", self._aggregate, lambda: (DashboardMetrics(), []),
            )

            ctx.transition(PipelineState.EXPORTING)
            self._stage(ctx, "export", self._export, dict)

            ctx.transition(PipelineState.DONE)
        except PipelineError as e:
            ctx.transition(PipelineState.FAILED)
            logger.error("Pipeline failed: %s", e)
            return PipelineResult(
                success=False,
                processed_data_path=processed_dir,
                type1_count=len(ctx.inventory.snapshots),
                type2_count=len(ctx.inventory.execution_logs),
                state=ctx.state,
                error=str(e),
            )

        if ctx.timed_out:
            logger.warning("Deadline of %.0fs reached; exported partial results", self._config.timeout_seconds)
        logger.info(
            "Session %s done: %d audit snapshot(s), %d execution log(s) -> %s",
            ctx.session.session_id, len(ctx.inventory.snapshots),
            len(ctx.inventory.execution_logs), processed_dir,
        )
        return PipelineResult(
            success=True,
            processed_data_path=processed_dir,
            type1_count=len(ctx.inventory.snapshots),
            type2_count=len(ctx.inventory.execution_logs),
            state=ctx.state,
        )


def run_pipeline(config: Config) -> PipelineResult:
    """Convenience entry point: build a pipeline for *config* and run it once."""
    return MaintenancePipeline(config).run()
