"""Per-module analysis of execution logs and audit snapshots."""

import logging
from typing import Any, Callable

from log_aggregator.loader import LoadResult, load_json, read_text
from log_aggregator.models import (
    FAILURE_LEVELS,
    SEVERITY_HIGH,
    SEVERITY_MEDIUM,
    AuditSummary,
    DurationSample,
    ErrorRecord,
    LogEvent,
    MaintenanceLogSummary,
    ModuleAnalysis,
    ModuleResult,
)
from log_aggregator.parser import (
    COUNT,
    DURATION,
    ENTRY,
    match_generic_error,
    match_hardening_signal,
    parse_line,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

# Lines between deadline checks while scanning a log
DEADLINE_CHECK_INTERVAL = 500

CATEGORY_SUFFIXES = ("Count", "Found", "Detected")
_TOTAL_KEYS = ("TotalFound", "TotalDetected", "TotalCount")


def _record(module: str, event: LogEvent, severity: str) -> ErrorRecord:
    return ErrorRecord(
        module=module,
        timestamp=event.timestamp,
        level=event.level,
        component=event.component,
        message=event.message,
        severity=severity,
    )


def _elapsed_seconds(start: str | None, end: str | None) -> float | None:
    start_dt, end_dt = parse_timestamp(start), parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return None
    try:
        delta = (end_dt - start_dt).total_seconds()
    except TypeError:
        # mixed naive/aware timestamps
        return None
    return delta if delta >= 0 else None


# ---------------------------------------------------------------------------
# Execution logs
# ---------------------------------------------------------------------------


def analyze_execution_log(
    module: str,
    text: str,
    should_stop: Callable[[], bool] | None = None,
) -> ModuleAnalysis:
    """Scan a module's execution log once, in line order."""
    analysis = ModuleAnalysis(module=module, has_log=bool(text and text.strip()))
    metrics = analysis.metrics
    component_hint = module.upper()

    for lineno, line in enumerate(text.splitlines()):
        if should_stop is not None and lineno % DEADLINE_CHECK_INTERVAL == 0 and lineno and should_stop():
            logger.warning("Deadline reached while analyzing %s at line %d", module, lineno)
            analysis.timed_out = True
            break

        if not analysis.hardening_signal and match_hardening_signal(line):
            analysis.hardening_signal = True

        parsed = parse_line(line, component_hint)
        if parsed is None:
            continue

        if parsed.kind == DURATION:
            analysis.durations.append(parsed.duration)
            continue
        if parsed.kind == COUNT:
            op = parsed.count.operation
            analysis.operation_counts[op] = analysis.operation_counts.get(op, 0) + parsed.count.count
            continue
        if parsed.kind != ENTRY:
            continue

        event = parsed.event
        metrics.total_operations += 1
        if metrics.start_time is None:
            metrics.start_time = event.timestamp
        metrics.end_time = event.timestamp

        if event.level == "SUCCESS":
            metrics.successful_operations += 1
            analysis.success_operations.append(event)
        elif event.level in FAILURE_LEVELS:
            metrics.failed_operations += 1
            analysis.errors.append(_record(module, event, SEVERITY_HIGH))
        elif event.level == "WARN":
            metrics.warning_count += 1
            analysis.warnings.append(_record(module, event, SEVERITY_MEDIUM))

        if parsed.modification is not None:
            analysis.modifications.append(parsed.modification)
        if parsed.task is not None:
            analysis.task_details.append(parsed.task)
            if parsed.task.duration_seconds is not None:
                analysis.durations.append(DurationSample(parsed.task.task, parsed.task.duration_seconds))

    if metrics.total_operations > 0:
        metrics.success_rate = round(metrics.successful_operations / metrics.total_operations * 100, 1)

    elapsed = _elapsed_seconds(metrics.start_time, metrics.end_time)
    if elapsed is None:
        elapsed = sum(d.seconds for d in analysis.durations)
    metrics.duration_seconds = round(elapsed, 3)

    logger.debug(
        "Analyzed %s: %d entries, %d errors, %d warnings, %d modifications",
        module, metrics.total_operations, metrics.failed_operations,
        metrics.warning_count, len(analysis.modifications),
    )
    return analysis


# ---------------------------------------------------------------------------
# Audit snapshots
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def suffix_fields(mapping: dict[str, Any], suffixes: tuple[str, ...] = CATEGORY_SUFFIXES) -> dict[str, Any]:
    """Numeric fields of *mapping* whose key ends in one of *suffixes*."""
    return {
        key: value
        for key, value in mapping.items()
        if isinstance(key, str) and key.endswith(suffixes) and _is_number(value)
    }


def normalize_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def unwrap_snapshot(module: str, data: Any) -> Any:
    """Strip a single top-level key that just repeats the module name."""
    if isinstance(data, dict) and len(data) == 1:
        (key, value), = data.items()
        if isinstance(value, (dict, list)) and normalize_name(str(key)) == normalize_name(module):
            return value
    return data


def _first_total(*sources: dict[str, Any]) -> int | None:
    for source in sources:
        for key in _TOTAL_KEYS:
            if _is_number(source.get(key)):
                return int(source[key])
    return None


def analyze_audit_snapshot(module: str, loaded: LoadResult) -> AuditSummary:
    """Extract the detected-item count and ``*Count``/``*Found``/``*Detected`` fields."""
    audit = AuditSummary(
        module=module,
        source=loaded.path,
        from_default=loaded.from_default,
        error=loaded.error,
    )
    data = unwrap_snapshot(module, loaded.data)

    if isinstance(data, list):
        audit.detected_count = len(data)
        return audit
    if not isinstance(data, dict):
        return audit

    summary = data.get("Summary") if isinstance(data.get("Summary"), dict) else {}

    categories = {k: v for k, v in suffix_fields(summary).items() if k not in _TOTAL_KEYS}
    categories.update({k: v for k, v in suffix_fields(data).items() if k not in _TOTAL_KEYS})
    audit.categories = dict(sorted(categories.items()))

    total = _first_total(summary, data)
    if total is not None:
        audit.detected_count = total
    else:
        list_items = [v for v in data.values() if isinstance(v, list)]
        if list_items and not categories:
            audit.detected_count = sum(len(v) for v in list_items)
        else:
            audit.detected_count = int(sum(categories.values()))

    for source in (data, summary):
        if _is_number(source.get("HealthScore")):
            audit.health_score = source["HealthScore"]
            break

    return audit


def merge_audit_into_metrics(analysis: ModuleAnalysis, audit: AuditSummary) -> ModuleAnalysis:
    """Copy detection results into the log-derived metrics for the module."""
    analysis.metrics.detected_count = audit.detected_count
    analysis.metrics.detection_details = {
        "Categories": dict(audit.categories),
        "HealthScore": audit.health_score,
        "Source": audit.source,
        "FromDefault": audit.from_default,
    }
    return analysis


# ---------------------------------------------------------------------------
# Global maintenance log
# ---------------------------------------------------------------------------


def bucket_maintenance_log(text: str) -> MaintenanceLogSummary:
    """Count the session-wide log by level; no per-module attribution.

    Unstructured lines that mention an error keyword become Medium-severity
    error records.
    """
    summary = MaintenanceLogSummary()
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        summary.total_lines += 1

        parsed = parse_line(stripped, "MAINTENANCE")
        if parsed is not None and parsed.kind == ENTRY:
            event = parsed.event
            summary.level_counts[event.level] = summary.level_counts.get(event.level, 0) + 1
            if event.level in FAILURE_LEVELS:
                summary.errors.append(_record("maintenance", event, SEVERITY_HIGH))
            elif event.level == "WARN":
                summary.warnings.append(_record("maintenance", event, SEVERITY_MEDIUM))
            continue

        summary.unparsed_lines += 1
        if match_generic_error(stripped):
            summary.errors.append(ErrorRecord(
                module="maintenance",
                timestamp="",
                level="ERROR",
                component="MAINTENANCE",
                message=stripped,
                severity=SEVERITY_MEDIUM,
            ))
    return summary


# ---------------------------------------------------------------------------
# Whole module
# ---------------------------------------------------------------------------


def analyze_module(
    module: str,
    snapshot_path: str | None,
    log_path: str | None,
    max_log_bytes: int | None = None,
    should_stop: Callable[[], bool] | None = None,
) -> ModuleResult:
    """Load and analyze everything a module left behind.

    Either artifact may be missing; the result then carries defaults.
    """
    loaded = load_json(snapshot_path, default={}) if snapshot_path else LoadResult(
        path="", data={}, from_default=True, error="file not found",
    )
    audit = analyze_audit_snapshot(module, loaded)

    if log_path:
        text_result = read_text(log_path, max_log_bytes)
        analysis = analyze_execution_log(module, text_result.text, should_stop)
        analysis.truncated = text_result.truncated
        analysis.error = text_result.error
    else:
        analysis = ModuleAnalysis(module=module)

    merge_audit_into_metrics(analysis, audit)
    return ModuleResult(module=module, analysis=analysis, audit=audit, audit_data=loaded.data)


def timed_out_result(module: str) -> ModuleResult:
    """Placeholder for a module the deadline prevented from being analyzed."""
    analysis = ModuleAnalysis(module=module, timed_out=True, error="not analyzed before deadline")
    audit = AuditSummary(module=module)
    merge_audit_into_metrics(analysis, audit)
    return ModuleResult(module=module, analysis=analysis, audit=audit, audit_data={})


def failed_result(module: str, error: str) -> ModuleResult:
    """Default result for a module whose analysis raised."""
    analysis = ModuleAnalysis(module=module, error=error)
    audit = AuditSummary(module=module, error=error)
    merge_audit_into_metrics(analysis, audit)
    return ModuleResult(module=module, analysis=analysis, audit=audit, audit_data={})
