"""Tests for log_aggregator/exporter.py"""

import json
import os

from log_aggregator.aggregator import build_error_list, compute_dashboard_metrics
from log_aggregator.analyzer import analyze_execution_log, bucket_maintenance_log, failed_result
from log_aggregator.exporter import (
    ERRORS_ANALYSIS,
    HEALTH_SCORES,
    METRICS_SUMMARY,
    MODULE_RESULTS,
    MODULE_SPECIFIC_DIR,
    ExportBundle,
    Exporter,
    build_errors_analysis,
    build_health_scores,
    build_metrics_summary,
    build_module_results,
    module_filename,
)
from log_aggregator.models import AuditSummary, ModuleResult, ProcessingSession
from log_aggregator.safe_ops import RetryPolicy

from conftest import BLOATWARE_LOG, MAINTENANCE_LOG


def _bundle(results=None):
    results = results or []
    return ExportBundle(
        session=ProcessingSession("sid", "2025-01-01T10:00:00+00:00", "2025-01-02T00:00:00+00:00"),
        results=results,
        dashboard=compute_dashboard_metrics(results),
        errors=build_error_list(results),
        maintenance=bucket_maintenance_log(MAINTENANCE_LOG),
        execution_summary={"State": "Exporting"},
    )


def _bloat_result():
    return ModuleResult(
        module="BloatwareRemoval",
        analysis=analyze_execution_log("BloatwareRemoval", BLOATWARE_LOG),
        audit=AuditSummary(module="BloatwareRemoval", detected_count=4, from_default=False),
        audit_data={"TotalFound": 4},
    )


def _read(path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


SESSION = {
    "SessionId": "sid",
    "CollectionTimestamp": "2025-01-01T10:00:00+00:00",
    "ProcessedAt": "2025-01-02T00:00:00+00:00",
}


class TestDocumentShapes:
    def test_metrics_summary(self):
        doc = build_metrics_summary(_bundle([_bloat_result()]))
        assert list(doc) == ["Session", "DashboardMetrics", "ExecutionSummary", "ModuleAnalysis"]
        assert doc["Session"] == SESSION
        assert doc["DashboardMetrics"]["TotalTasks"] == 1
        analysis = doc["ModuleAnalysis"]["BloatwareRemoval"]
        assert analysis["Metrics"]["TotalOperations"] == 6
        assert analysis["Modifications"][0]["Target"] == "Candy Crush"

    def test_module_results(self):
        doc = build_module_results(_bundle([_bloat_result()]))
        assert list(doc) == ["Session", "AuditResults", "ExecutionAnalysis", "Modifications", "PerformanceData"]
        assert doc["AuditResults"]["BloatwareRemoval"]["DetectedCount"] == 4
        assert doc["AuditResults"]["BloatwareRemoval"]["Data"] == {"TotalFound": 4}
        assert doc["PerformanceData"]["Modules"]["BloatwareRemoval"]["OperationCounts"] == {"removed": 3}

    def test_errors_analysis(self):
        doc = build_errors_analysis(_bundle([_bloat_result()]))
        assert list(doc) == ["Session", "Errors", "ByModule", "SeverityCounts", "MaintenanceLog"]
        assert doc["Errors"][0]["Severity"] == "High"
        assert doc["Errors"][0]["Component"] == "BLOATWARE"
        assert doc["SeverityCounts"] == {"High": 1, "Medium": 1, "Low": 0}
        assert doc["ByModule"]["BloatwareRemoval"]["ErrorCount"] == 1
        assert doc["MaintenanceLog"]["LevelCounts"] == {"INFO": 1, "WARN": 1}

    def test_health_scores(self):
        doc = build_health_scores(_bundle())
        assert list(doc) == ["Session", "SystemHealth", "SecurityScore", "PerformanceScore"]
        assert set(doc["SystemHealth"]["Factors"]) == {"SuccessRate", "ErrorRate", "ProcessingEfficiency", "ModuleCompletion"}
        assert doc["SecurityScore"] == {"Score": 50, "Contributors": []}
        assert doc["PerformanceScore"]["Score"] == (5 + 25) * 2

    def test_empty_bundle_keeps_shape(self):
        doc = build_module_results(_bundle())
        assert doc["AuditResults"] == {}
        assert doc["PerformanceData"]["Totals"]["DurationSamples"] == 0


def test_module_filename():
    assert module_filename("TelemetryDisable") == "TelemetryDisable.json"
    assert module_filename("../evil/name") == "evil_name.json"
    assert module_filename("///") == "module.json"


class TestExporter:
    def test_export_all_writes_every_document(self, tmp_path):
        out = tmp_path / "processed"
        bundle = _bundle([_bloat_result(), failed_result("Broken", "ValueError: x")])
        outcomes = Exporter(str(out)).export_all(bundle)

        assert all(o.success for o in outcomes.values())
        for name in (METRICS_SUMMARY, MODULE_RESULTS, ERRORS_ANALYSIS, HEALTH_SCORES):
            assert _read(out / name)["Session"] == SESSION
        module_doc = _read(out / MODULE_SPECIFIC_DIR / "BloatwareRemoval.json")
        assert list(module_doc) == ["Session", "Module", "AuditData", "ExecutionAnalysis"]
        # a module with neither log nor snapshot data gets no module-specific file
        assert not (out / MODULE_SPECIFIC_DIR / "Broken.json").exists()
        assert not [n for n in os.listdir(out) if n.endswith(".tmp")]

    def test_output_is_utf8_and_indented(self, tmp_path):
        exporter = Exporter(str(tmp_path))
        path = exporter.write_document("doc.json", {"Name": "Überwachung"})
        with open(path, encoding="utf-8") as f:
            text = f.read()
        assert "Überwachung" in text
        assert text.startswith("{\n  ")
        assert text.endswith("}\n")

    def test_write_failure_isolated(self, tmp_path, monkeypatch, caplog):
        exporter = Exporter(str(tmp_path), RetryPolicy(max_attempts=2, backoff_seconds=0))
        real_write = exporter._write_json

        def flaky_write(path, payload):
            if path.endswith(ERRORS_ANALYSIS):
                raise OSError("disk full")
            return real_write(path, payload)

        monkeypatch.setattr(exporter, "_write_json", flaky_write)
        outcomes = exporter.export_all(_bundle())

        assert outcomes[ERRORS_ANALYSIS].success is False
        assert outcomes[METRICS_SUMMARY].success is True
        assert (tmp_path / HEALTH_SCORES).exists()
        assert "Failed to write errors-analysis.json" in caplog.text
