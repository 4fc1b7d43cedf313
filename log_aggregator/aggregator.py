"""Session-wide metrics, health/security scoring and the global error list."""

import logging
from collections import Counter
from typing import Iterable

from log_aggregator.analyzer import normalize_name
from log_aggregator.models import (
    SEVERITY_HIGH,
    SEVERITY_LOW,
    SEVERITY_MEDIUM,
    SEVERITY_RANK,
    DashboardMetrics,
    ErrorRecord,
    ModuleResult,
    TaskResult,
)
from log_aggregator.parser import parse_timestamp

logger = logging.getLogger(__name__)

DEFAULT_SECURITY_MODULES = ("TelemetryDisable", "SystemOptimization")
SECURITY_BASE_SCORE = 50
SECURITY_MODULE_BONUS = 25

# ---------------------------------------------------------------------------
# Health score factors (each 5..25, total 0..100)
# ---------------------------------------------------------------------------


def success_rate_factor(success_rate: float) -> int:
    if success_rate >= 90:
        return 25
    if success_rate >= 75:
        return 20
    if success_rate >= 50:
        return 15
    return 5


def error_rate_factor(error_count: int) -> int:
    if error_count == 0:
        return 25
    if error_count <= 2:
        return 20
    if error_count <= 5:
        return 15
    return 5


def processing_ratio(processed: int, detected: int) -> float:
    """processed/detected; nothing detected counts as fully processed."""
    if detected <= 0:
        return 1.0
    return processed / detected


def processing_efficiency_factor(processed: int, detected: int) -> int:
    ratio = processing_ratio(processed, detected)
    if ratio >= 0.9:
        return 25
    if ratio >= 0.7:
        return 20
    return 10


def module_completion_factor(modules_executed: int) -> int:
    if modules_executed >= 5:
        return 25
    if modules_executed >= 3:
        return 20
    return 10


def health_factors(
    success_rate: float,
    error_count: int,
    items_processed: int,
    items_detected: int,
    modules_executed: int,
) -> dict[str, int]:
    return {
        "SuccessRate": success_rate_factor(success_rate),
        "ErrorRate": error_rate_factor(error_count),
        "ProcessingEfficiency": processing_efficiency_factor(items_processed, items_detected),
        "ModuleCompletion": module_completion_factor(modules_executed),
    }


def health_score(factors: dict[str, int]) -> int:
    return min(100, max(0, sum(factors.values())))


def performance_score(factors: dict[str, int]) -> int:
    """Success-rate and efficiency factors rescaled to 0..100."""
    return min(100, (factors.get("SuccessRate", 0) + factors.get("ProcessingEfficiency", 0)) * 2)


# ---------------------------------------------------------------------------
# Security score
# ---------------------------------------------------------------------------


def security_score(
    results: Iterable[ModuleResult],
    security_modules: Iterable[str] = DEFAULT_SECURITY_MODULES,
) -> tuple[int, list[str]]:
    """Base 50, +25 per hardening module whose log reports success; max 100.

    Returns the score and the names of the contributing modules.
    """
    wanted = {normalize_name(name): name for name in security_modules}
    contributors = []
    for result in results:
        key = normalize_name(result.module)
        if key in wanted and result.analysis.hardening_signal:
            contributors.append(result.module)

    score = SECURITY_BASE_SCORE + SECURITY_MODULE_BONUS * len(contributors)
    return min(100, score), sorted(contributors)


# ---------------------------------------------------------------------------
# Dashboard metrics
# ---------------------------------------------------------------------------


def _task_outcomes(
    results: list[ModuleResult],
    task_results: dict[str, TaskResult],
) -> list[tuple[str, bool, float]]:
    """One (module, success, duration) per executed module.

    An external task result for a module wins over the log-derived outcome;
    external results for modules without a log are extra tasks.
    """
    external = {normalize_name(name): task for name, task in task_results.items()}
    outcomes = []
    seen = set()

    for result in results:
        if not result.analysis.has_log:
            continue
        key = normalize_name(result.module)
        seen.add(key)
        metrics = result.analysis.metrics
        task = external.get(key)
        if task is not None:
            duration = task.duration_seconds or metrics.duration_seconds
            outcomes.append((result.module, task.success, duration))
        else:
            outcomes.append((result.module, metrics.failed_operations == 0, metrics.duration_seconds))

    for key, task in sorted(external.items()):
        if key not in seen:
            outcomes.append((task.module, task.success, task.duration_seconds))
    return outcomes


def compute_dashboard_metrics(
    results: list[ModuleResult],
    task_results: dict[str, TaskResult] | None = None,
    security_modules: Iterable[str] = DEFAULT_SECURITY_MODULES,
) -> DashboardMetrics:
    """Reduce all per-module results into session-wide dashboard metrics."""
    dashboard = DashboardMetrics()
    outcomes = _task_outcomes(results, task_results or {})

    dashboard.modules_executed = sum(1 for r in results if r.analysis.has_log)
    dashboard.total_tasks = len(outcomes)
    dashboard.successful_tasks = sum(1 for _, ok, _ in outcomes if ok)
    dashboard.failed_tasks = dashboard.total_tasks - dashboard.successful_tasks
    dashboard.total_duration_seconds = round(sum(d for _, _, d in outcomes), 3)

    dashboard.items_detected = sum(r.audit.detected_count for r in results)
    dashboard.items_processed = sum(r.analysis.items_processed for r in results)
    dashboard.error_count = sum(len(r.analysis.errors) for r in results)
    dashboard.warning_count = sum(len(r.analysis.warnings) for r in results)

    if dashboard.total_tasks > 0:
        dashboard.success_rate = round(dashboard.successful_tasks / dashboard.total_tasks * 100, 1)

    dashboard.health_factors = health_factors(
        dashboard.success_rate,
        dashboard.error_count,
        dashboard.items_processed,
        dashboard.items_detected,
        dashboard.modules_executed,
    )
    dashboard.health_score = health_score(dashboard.health_factors)
    dashboard.security_score, dashboard.security_contributors = security_score(results, security_modules)

    logger.info(
        "Dashboard: %d module(s), %d/%d tasks succeeded, health=%d, security=%d",
        dashboard.modules_executed, dashboard.successful_tasks, dashboard.total_tasks,
        dashboard.health_score, dashboard.security_score,
    )
    return dashboard


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def _timestamp_key(record: ErrorRecord) -> str:
    parsed = parse_timestamp(record.timestamp)
    if parsed is None:
        return record.timestamp or ""
    return parsed.replace(tzinfo=None).isoformat()


def sort_errors(records: Iterable[ErrorRecord]) -> list[ErrorRecord]:
    """Severity High -> Medium -> Low, newest first within a severity."""
    by_time = sorted(records, key=_timestamp_key, reverse=True)
    return sorted(by_time, key=lambda r: SEVERITY_RANK.get(r.severity, len(SEVERITY_RANK)))


def build_error_list(results: Iterable[ModuleResult]) -> list[ErrorRecord]:
    """Every error and warning record across all modules, severity-sorted."""
    records: list[ErrorRecord] = []
    for result in results:
        records.extend(result.analysis.errors)
        records.extend(result.analysis.warnings)
    return sort_errors(records)


def severity_counts(records: Iterable[ErrorRecord]) -> dict[str, int]:
    counts = Counter(r.severity for r in records)
    return {severity: counts.get(severity, 0) for severity in (SEVERITY_HIGH, SEVERITY_MEDIUM, SEVERITY_LOW)}


# ---------------------------------------------------------------------------
# Performance data
# ---------------------------------------------------------------------------


def performance_data(results: Iterable[ModuleResult]) -> dict:
    """Per-module duration samples and operation counts with session totals."""
    modules = {}
    total_samples = 0
    total_seconds = 0.0
    operation_totals: Counter = Counter()

    for result in results:
        analysis = result.analysis
        seconds = [d.seconds for d in analysis.durations]
        total_samples += len(seconds)
        total_seconds += sum(seconds)
        operation_totals.update(analysis.operation_counts)
        modules[result.module] = {
            "Duration": analysis.metrics.duration_seconds,
            "DurationSamples": [{"Operation": d.operation, "Seconds": d.seconds} for d in analysis.durations],
            "AverageSampleSeconds": round(sum(seconds) / len(seconds), 3) if seconds else 0.0,
            "OperationCounts": dict(sorted(analysis.operation_counts.items())),
            "ItemsProcessed": analysis.items_processed,
        }

    return {
        "Modules": modules,
        "Totals": {
            "DurationSamples": total_samples,
            "SampledSeconds": round(total_seconds, 3),
            "AverageSampleSeconds": round(total_seconds / total_samples, 3) if total_samples else 0.0,
            "OperationCounts": dict(sorted(operation_totals.items())),
        },
    }
