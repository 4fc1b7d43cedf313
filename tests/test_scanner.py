"""Tests for log_aggregator/scanner.py"""

import logging
import os

from log_aggregator.scanner import (
    DIRECTORIES,
    FILES,
    discover_artifacts,
    module_name_from_snapshot,
    newest_mtime,
    scan_entries,
)


def test_missing_root_is_not_an_exception(empty_root):
    result = scan_entries(empty_root)
    assert result.entries == []
    assert result.found is False
    assert result.error == "not found"


def test_files_filtered_by_pattern(temp_root):
    result = scan_entries(os.path.join(temp_root, "data"), FILES, "*-results.json")
    names = [os.path.basename(p) for p in result.entries]
    assert names == [
        "BloatwareRemoval-results.json",
        "DriverUpdate-results.json",
        "TelemetryDisable-results.json",
    ]
    assert result.error is None


def test_directories_only(temp_root):
    result = scan_entries(os.path.join(temp_root, "logs"), DIRECTORIES)
    assert [os.path.basename(p) for p in result.entries] == ["BloatwareRemoval", "TelemetryDisable"]


def test_module_name_from_snapshot():
    assert module_name_from_snapshot("/x/data/SystemOptimization-results.json") == "SystemOptimization"
    assert module_name_from_snapshot("/x/data/other.json") == "other"


def test_discover_artifacts(temp_root):
    inventory = discover_artifacts(temp_root)
    assert sorted(inventory.snapshots) == ["BloatwareRemoval", "DriverUpdate", "TelemetryDisable"]
    assert sorted(inventory.execution_logs) == ["BloatwareRemoval", "TelemetryDisable"]
    assert inventory.maintenance_log.endswith("maintenance.log")
    assert inventory.modules == ["BloatwareRemoval", "DriverUpdate", "TelemetryDisable"]


def test_module_dir_without_execution_log_is_skipped(temp_root):
    os.makedirs(os.path.join(temp_root, "logs", "EmptyModule"))
    assert "EmptyModule" not in discover_artifacts(temp_root).execution_logs


def test_discover_on_missing_root(empty_root):
    inventory = discover_artifacts(empty_root)
    assert inventory.modules == []
    assert inventory.maintenance_log is None


def test_newest_mtime(tmp_path):
    older = tmp_path / "a.txt"
    newer = tmp_path / "b.txt"
    older.write_text("a")
    newer.write_text("b")
    os.utime(older, (1_700_000_000, 1_700_000_000))
    os.utime(newer, (1_700_000_100, 1_700_000_100))

    stamp = newest_mtime([str(older), str(newer), str(tmp_path / "missing")])
    assert stamp == "2023-11-14T22:15:00+00:00"
    assert newest_mtime([]) is None


def test_task_results_file_is_not_a_module(temp_root):
    with open(os.path.join(temp_root, "data", "task-results.json"), "w") as f:
        f.write("[]")
    assert "task" not in discover_artifacts(temp_root).snapshots


def test_excluded_paths_skipped(temp_root):
    excluded = os.path.join(temp_root, "data", "DriverUpdate-results.json")
    inventory = discover_artifacts(temp_root, exclude=[excluded])
    assert "DriverUpdate" not in inventory.snapshots


def test_discover_logs_when_no_snapshots(empty_root, caplog):
    with caplog.at_level(logging.DEBUG, logger="log_aggregator.scanner"):
        inventory = discover_artifacts(empty_root)
    assert inventory.modules == []
    assert "No audit snapshots under" in caplog.text
