import json
import os

import pytest

from log_aggregator.config import Config

BLOATWARE_LOG = """\
[2025-01-01 10:00:00] [INFO] [BLOATWARE] Starting bloatware removal
[2025-01-01 10:00:05] [INFO] [BLOATWARE] Removed Candy Crush
[2025-01-01 10:00:06] [SUCCESS] [BLOATWARE] Removed Xbox Game Bar
[2025-01-01 10:00:07] [ERROR] [BLOATWARE] Failed to remove Candy Crush
[2025-01-01 10:00:09] [WARN] [BLOATWARE] Cortana is still running
[2025-01-01 10:00:10] [INFO] [BLOATWARE] Completed bloatware removal in 1500ms
3 apps removed
"""

TELEMETRY_LOG = """\
[2025-01-01 11:00:00] [INFO] [TELEMETRY] Starting telemetry analysis
[2025-01-01 11:00:02] [INFO] [TELEMETRY] Disabled service DiagTrack
[2025-01-01 11:00:03] [SUCCESS] [TELEMETRY] Privacy settings applied successfully
"""

MAINTENANCE_LOG = """\
[2025-01-01 09:59:00] [INFO] [MAIN] Maintenance session started
[2025-01-01 10:30:00] [WARN] [MAIN] Restore point skipped
Unhandled exception in module loader
plain progress line
"""


def write_file(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return str(path)


def write_json(path, data):
    return write_file(path, json.dumps(data))


@pytest.fixture
def temp_root(tmp_path):
    """A temp_root with two modules, a snapshot-only module and a maintenance log."""
    root = tmp_path / "temp_files"
    write_file(root / "logs" / "BloatwareRemoval" / "execution.log", BLOATWARE_LOG)
    write_file(root / "logs" / "TelemetryDisable" / "execution.log", TELEMETRY_LOG)
    write_file(root / "logs" / "maintenance.log", MAINTENANCE_LOG)
    write_json(root / "data" / "BloatwareRemoval-results.json", {
        "Summary": {"TotalFound": 4, "AppxCount": 3, "ServicesFound": 1},
        "HealthScore": 80,
    })
    write_json(root / "data" / "TelemetryDisable-results.json", {"Services": ["DiagTrack", "dmwappushservice"]})
    write_json(root / "data" / "DriverUpdate-results.json", [{"Name": "GPU"}, {"Name": "Audio"}])
    return str(root)


@pytest.fixture
def empty_root(tmp_path):
    return str(tmp_path / "nothing_here")


@pytest.fixture
def config(temp_root, tmp_path):
    return Config(
        temp_root=temp_root,
        output_dir=str(tmp_path / "processed"),
        write_backoff_seconds=0.0,
    )
