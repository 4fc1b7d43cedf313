"""Writes the processed JSON documents consumed by the report renderer."""

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from typing import Any

from log_aggregator.aggregator import (
    performance_data,
    performance_score,
    severity_counts,
)
from log_aggregator.models import (
    DashboardMetrics,
    ErrorRecord,
    MaintenanceLogSummary,
    ModuleResult,
    ProcessingSession,
    to_document,
)
from log_aggregator.safe_ops import OperationResult, RetryPolicy, safe_operation

logger = logging.getLogger(__name__)

METRICS_SUMMARY = "metrics-summary.json"
MODULE_RESULTS = "module-results.json"
ERRORS_ANALYSIS = "errors-analysis.json"
HEALTH_SCORES = "health-scores.json"
MODULE_SPECIFIC_DIR = "module-specific"

_UNSAFE_FILENAME_RE = re.compile(r'[^\w.\-]+')


@dataclass
class ExportBundle:
    """Everything the export stage needs, already aggregated."""

    session: ProcessingSession
    results: list[ModuleResult] = field(default_factory=list)
    dashboard: DashboardMetrics = field(default_factory=DashboardMetrics)
    errors: list[ErrorRecord] = field(default_factory=list)
    maintenance: MaintenanceLogSummary = field(default_factory=MaintenanceLogSummary)
    execution_summary: dict[str, Any] = field(default_factory=dict)


def module_filename(module: str) -> str:
    name = _UNSAFE_FILENAME_RE.sub("_", module).strip("._") or "module"
    return f"{name}.json"


# ---------------------------------------------------------------------------
# Document builders
# ---------------------------------------------------------------------------


def analysis_document(result: ModuleResult) -> dict[str, Any]:
    analysis = result.analysis
    return {
        "Module": result.module,
        "HasLog": analysis.has_log,
        "Metrics": to_document(analysis.metrics),
        "TaskDetails": to_document(analysis.task_details),
        "Modifications": to_document(analysis.modifications),
        "Errors": to_document(analysis.errors),
        "Warnings": to_document(analysis.warnings),
        "SuccessOperations": to_document(analysis.success_operations),
        "Truncated": analysis.truncated,
        "TimedOut": analysis.timed_out,
        "Error": analysis.error,
    }


def audit_document(result: ModuleResult) -> dict[str, Any]:
    audit = result.audit
    return {
        "Data": result.audit_data if result.audit_data is not None else {},
        "DetectedCount": audit.detected_count,
        "Categories": dict(audit.categories),
        "HealthScore": audit.health_score,
        "FromDefault": audit.from_default,
        "Error": audit.error,
    }


def build_metrics_summary(bundle: ExportBundle) -> dict[str, Any]:
    return {
        "Session": bundle.session.to_dict(),
        "DashboardMetrics": to_document(bundle.dashboard),
        "ExecutionSummary": bundle.execution_summary,
        "ModuleAnalysis": {r.module: analysis_document(r) for r in bundle.results},
    }


def build_module_results(bundle: ExportBundle) -> dict[str, Any]:
    return {
        "Session": bundle.session.to_dict(),
        "AuditResults": {r.module: audit_document(r) for r in bundle.results},
        "ExecutionAnalysis": {r.module: analysis_document(r) for r in bundle.results},
        "Modifications": {r.module: to_document(r.analysis.modifications) for r in bundle.results},
        "PerformanceData": performance_data(bundle.results),
    }


def build_errors_analysis(bundle: ExportBundle) -> dict[str, Any]:
    by_module = {}
    for result in bundle.results:
        records = [e for e in bundle.errors if e.module == result.module]
        by_module[result.module] = {
            "ErrorCount": len(result.analysis.errors),
            "WarningCount": len(result.analysis.warnings),
            "SeverityCounts": severity_counts(records),
            "Records": to_document(records),
        }
    return {
        "Session": bundle.session.to_dict(),
        "Errors": to_document(bundle.errors),
        "ByModule": by_module,
        "SeverityCounts": severity_counts(bundle.errors),
        "MaintenanceLog": to_document(bundle.maintenance),
    }


def build_health_scores(bundle: ExportBundle) -> dict[str, Any]:
    factors = dict(bundle.dashboard.health_factors)
    return {
        "Session": bundle.session.to_dict(),
        "SystemHealth": {
            "Score": bundle.dashboard.health_score,
            "Factors": factors,
        },
        "SecurityScore": {
            "Score": bundle.dashboard.security_score,
            "Contributors": list(bundle.dashboard.security_contributors),
        },
        "PerformanceScore": {
            "Score": performance_score(factors),
            "Factors": {
                "SuccessRate": factors.get("SuccessRate", 0),
                "ProcessingEfficiency": factors.get("ProcessingEfficiency", 0),
            },
        },
    }


def build_module_document(bundle: ExportBundle, result: ModuleResult) -> dict[str, Any]:
    return {
        "Session": bundle.session.to_dict(),
        "Module": result.module,
        "AuditData": audit_document(result),
        "ExecutionAnalysis": analysis_document(result),
    }


def has_data(result: ModuleResult) -> bool:
    return result.analysis.has_log or not result.audit.from_default


# ---------------------------------------------------------------------------
# Writer
# ---------------------------------------------------------------------------


class Exporter:
    """Writes each processed document independently; one failure never blocks the rest."""

    def __init__(self, output_dir: str, retry: RetryPolicy | None = None):
        self._output_dir = output_dir
        self._retry = retry or RetryPolicy()

    @property
    def output_dir(self) -> str:
        return self._output_dir

    def _write_json(self, path: str, payload: Any) -> str:
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
                f.write("\n")
            os.replace(tmp, path)
        except Exception:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return path

    def write_document(self, name: str, payload: Any) -> str:
        """Atomically write *payload* under the output directory, with retries."""
        path = os.path.join(self._output_dir, name)
        return self._retry.call(self._write_json, path, payload)

    def _export(self, name: str, build, *args) -> OperationResult:
        def _build_and_write():
            return self.write_document(name, build(*args))

        result = safe_operation(_build_and_write, name=f"export {name}")
        if result.success:
            logger.info("Wrote %s", result.data)
        else:
            logger.error("Failed to write %s: %s", name, result.error)
        return result

    def export_all(self, bundle: ExportBundle) -> dict[str, OperationResult]:
        """Write the four session documents and one file per module with data."""
        outcomes = {
            METRICS_SUMMARY: self._export(METRICS_SUMMARY, build_metrics_summary, bundle),
            MODULE_RESULTS: self._export(MODULE_RESULTS, build_module_results, bundle),
            ERRORS_ANALYSIS: self._export(ERRORS_ANALYSIS, build_errors_analysis, bundle),
            HEALTH_SCORES: self._export(HEALTH_SCORES, build_health_scores, bundle),
        }
        for result in bundle.results:
            if not has_data(result):
                continue
            name = os.path.join(MODULE_SPECIFIC_DIR, module_filename(result.module))
            outcomes[name] = self._export(name, build_module_document, bundle, result)

        failed = [name for name, outcome in outcomes.items() if not outcome.success]
        if failed:
            logger.error("%d of %d document(s) could not be written: %s", len(failed), len(outcomes), failed)
        return outcomes
