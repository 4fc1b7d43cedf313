"""Tests for log_aggregator/aggregator.py"""

import pytest

from log_aggregator.aggregator import (
    build_error_list,
    compute_dashboard_metrics,
    error_rate_factor,
    health_factors,
    health_score,
    module_completion_factor,
    performance_data,
    performance_score,
    processing_efficiency_factor,
    processing_ratio,
    security_score,
    severity_counts,
    sort_errors,
    success_rate_factor,
)
from log_aggregator.analyzer import analyze_execution_log
from log_aggregator.models import (
    AuditSummary,
    ErrorRecord,
    ModuleAnalysis,
    ModuleResult,
    TaskResult,
)

from conftest import BLOATWARE_LOG, TELEMETRY_LOG


def _result(module, log_text=None, detected=0):
    analysis = analyze_execution_log(module, log_text) if log_text is not None else ModuleAnalysis(module=module)
    return ModuleResult(
        module=module,
        analysis=analysis,
        audit=AuditSummary(module=module, detected_count=detected, from_default=detected == 0),
    )


def _clean_log(module):
    return f"[2025-01-01 10:00:00] [SUCCESS] [{module.upper()}] Completed without issues\n"


def _error(ts, severity, message="m"):
    return ErrorRecord(module="M", timestamp=ts, level="ERROR", component="C", message=message, severity=severity)


class TestFactors:
    @pytest.mark.parametrize("rate,expected", [(100, 25), (90, 25), (89.9, 20), (75, 20), (50, 15), (49, 5), (0, 5)])
    def test_success_rate(self, rate, expected):
        assert success_rate_factor(rate) == expected

    @pytest.mark.parametrize("count,expected", [(0, 25), (1, 20), (2, 20), (3, 15), (5, 15), (6, 5)])
    def test_error_rate(self, count, expected):
        assert error_rate_factor(count) == expected

    def test_processing_ratio_nothing_detected(self):
        assert processing_ratio(0, 0) == 1.0
        assert processing_efficiency_factor(0, 0) == 25

    @pytest.mark.parametrize("processed,detected,expected", [(9, 10, 25), (7, 10, 20), (6, 10, 10)])
    def test_processing_efficiency(self, processed, detected, expected):
        assert processing_efficiency_factor(processed, detected) == expected

    @pytest.mark.parametrize("modules,expected", [(5, 25), (4, 20), (3, 20), (2, 10), (0, 10)])
    def test_module_completion(self, modules, expected):
        assert module_completion_factor(modules) == expected

    def test_perfect_health_is_exactly_100(self):
        factors = health_factors(success_rate=90, error_count=0, items_processed=9, items_detected=10, modules_executed=5)
        assert health_score(factors) == 100

    def test_performance_score(self):
        assert performance_score({"SuccessRate": 25, "ProcessingEfficiency": 25}) == 100
        assert performance_score({"SuccessRate": 15, "ProcessingEfficiency": 10}) == 50
        assert performance_score({}) == 0


class TestSecurityScore:
    def test_base_score_without_security_modules(self):
        assert security_score([_result("BloatwareRemoval", BLOATWARE_LOG)]) == (50, [])

    def test_each_hardening_module_adds_25(self):
        results = [
            _result("TelemetryDisable", TELEMETRY_LOG),
            _result("SystemOptimization", "[2025-01-01 10:00:00] [SUCCESS] [OPT] Optimization completed\n"),
        ]
        assert security_score(results) == (100, ["SystemOptimization", "TelemetryDisable"])

    def test_module_without_signal_does_not_contribute(self):
        result = _result("TelemetryDisable", "[2025-01-01 10:00:00] [ERROR] [TEL] Could not change policy\n")
        assert security_score([result]) == (50, [])

    def test_configured_modules_matched_loosely(self):
        score, contributors = security_score([_result("telemetry-disable", TELEMETRY_LOG)], ["TelemetryDisable"])
        assert score == 75
        assert contributors == ["telemetry-disable"]


class TestDashboard:
    def test_mixed_session(self):
        results = [
            _result("BloatwareRemoval", BLOATWARE_LOG, detected=4),
            _result("DriverUpdate", detected=2),
            _result("TelemetryDisable", TELEMETRY_LOG, detected=2),
        ]
        dashboard = compute_dashboard_metrics(results)
        assert dashboard.modules_executed == 2
        assert dashboard.total_tasks == 2
        assert dashboard.successful_tasks == 1
        assert dashboard.failed_tasks == 1
        assert dashboard.success_rate == 50.0
        assert dashboard.error_count == 1
        assert dashboard.warning_count == 1
        assert dashboard.items_detected == 8
        assert dashboard.items_processed == 4
        assert dashboard.health_factors == {
            "SuccessRate": 15,
            "ErrorRate": 20,
            "ProcessingEfficiency": 10,
            "ModuleCompletion": 10,
        }
        assert dashboard.health_score == 55
        assert dashboard.security_score == 75
        assert dashboard.security_contributors == ["TelemetryDisable"]

    def test_empty_session(self):
        dashboard = compute_dashboard_metrics([])
        assert dashboard.total_tasks == 0
        assert dashboard.success_rate == 0.0
        assert dashboard.health_factors["ProcessingEfficiency"] == 25
        assert dashboard.security_score == 50

    def test_healthy_session_scores_100(self):
        results = [_result(f"Module{i}", _clean_log(f"Module{i}")) for i in range(5)]
        dashboard = compute_dashboard_metrics(results)
        assert dashboard.success_rate == 100.0
        assert dashboard.health_score == 100

    def test_external_task_result_overrides_log_outcome(self):
        results = [_result("BloatwareRemoval", BLOATWARE_LOG)]
        tasks = {"BloatwareRemoval": TaskResult("BloatwareRemoval", success=True, duration_seconds=30.0)}
        dashboard = compute_dashboard_metrics(results, tasks)
        assert dashboard.successful_tasks == 1
        assert dashboard.failed_tasks == 0
        assert dashboard.total_duration_seconds == 30.0

    def test_external_task_without_log_is_extra_task(self):
        results = [_result("TelemetryDisable", TELEMETRY_LOG)]
        tasks = {"DiskCleanup": TaskResult("DiskCleanup", success=False, duration_seconds=4.0)}
        dashboard = compute_dashboard_metrics(results, tasks)
        assert dashboard.total_tasks == 2
        assert dashboard.failed_tasks == 1
        assert dashboard.modules_executed == 1


class TestErrors:
    def test_sort_severity_then_newest_first(self):
        records = [
            _error("2025-01-01 09:00:00", "Medium", "old warning"),
            _error("2025-01-01 08:00:00", "High", "old error"),
            _error("2025-01-01 10:00:00", "High", "new error"),
            _error("2025-01-01 11:00:00", "Low", "note"),
        ]
        assert [r.message for r in sort_errors(records)] == ["new error", "old error", "old warning", "note"]

    def test_error_list_spans_modules(self):
        results = [_result("BloatwareRemoval", BLOATWARE_LOG), _result("TelemetryDisable", TELEMETRY_LOG)]
        records = build_error_list(results)
        assert [(r.severity, r.level) for r in records] == [("High", "ERROR"), ("Medium", "WARN")]
        assert records[0].message == "Failed to remove Candy Crush"

    def test_severity_counts_always_has_all_keys(self):
        assert severity_counts([]) == {"High": 0, "Medium": 0, "Low": 0}
        assert severity_counts([_error("", "High"), _error("", "High")])["High"] == 2


def test_performance_data():
    data = performance_data([_result("BloatwareRemoval", BLOATWARE_LOG), _result("DriverUpdate")])
    bloat = data["Modules"]["BloatwareRemoval"]
    assert bloat["DurationSamples"] == [{"Operation": "bloatware removal", "Seconds": 1.5}]
    assert bloat["AverageSampleSeconds"] == 1.5
    assert bloat["OperationCounts"] == {"removed": 3}
    assert data["Modules"]["DriverUpdate"]["AverageSampleSeconds"] == 0.0
    assert data["Totals"]["DurationSamples"] == 1
    assert data["Totals"]["OperationCounts"] == {"removed": 3}
