"""Defensive discovery of audit snapshots and execution-log directories."""

import fnmatch
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

logger = logging.getLogger(__name__)

FILES = "files"
DIRECTORIES = "directories"

RESULTS_SUFFIX = "-results.json"
EXECUTION_LOG = "execution.log"
MAINTENANCE_LOG = "maintenance.log"
TASK_RESULTS = "task-results.json"


@dataclass
class ScanResult:
    root: str
    entries: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def found(self) -> bool:
        return bool(self.entries)


def scan_entries(root: str, kind: str = FILES, pattern: str | None = None) -> ScanResult:
    """List entries of *root* that match *kind* and an optional glob *pattern*.

    Returns paths under *root* sorted by name. A missing or unreadable root
    yields an empty result with ``error`` set; nothing is raised.
    """
    if not os.path.isdir(root):
        logger.debug("Scan root %s does not exist", root)
        return ScanResult(root=root, error="not found")

    try:
        names = sorted(os.listdir(root))
    except OSError as e:
        logger.warning("Cannot list %s: %s", root, e)
        return ScanResult(root=root, error=str(e))

    entries = []
    for name in names:
        if pattern and not fnmatch.fnmatch(name, pattern):
            continue
        path = os.path.join(root, name)
        if kind == FILES and not os.path.isfile(path):
            continue
        if kind == DIRECTORIES and not os.path.isdir(path):
            continue
        entries.append(path)
    return ScanResult(root=root, entries=entries)


# ---------------------------------------------------------------------------
# Well-known layout
# ---------------------------------------------------------------------------


def module_name_from_snapshot(path: str) -> str:
    name = os.path.basename(path)
    if name.endswith(RESULTS_SUFFIX):
        return name[: -len(RESULTS_SUFFIX)]
    return os.path.splitext(name)[0]


@dataclass
class ArtifactInventory:
    snapshots: dict[str, str] = field(default_factory=dict)       # module -> json path
    execution_logs: dict[str, str] = field(default_factory=dict)  # module -> log path
    maintenance_log: str | None = None

    @property
    def modules(self) -> list[str]:
        return sorted(set(self.snapshots) | set(self.execution_logs))


def discover_artifacts(temp_root: str, exclude: Iterable[str] = ()) -> ArtifactInventory:
    """Find ``data/<module>-results.json`` and ``logs/<module>/execution.log``.

    The task-results file shares the snapshot suffix and is never a module;
    *exclude* names further paths to leave out.
    """
    inventory = ArtifactInventory()
    skipped = {os.path.abspath(p) for p in exclude}

    data_scan = scan_entries(os.path.join(temp_root, "data"), FILES, f"*{RESULTS_SUFFIX}")
    if not data_scan.found:
        logger.debug("No audit snapshots under %s", data_scan.root)
    for path in data_scan.entries:
        if os.path.basename(path) == TASK_RESULTS or os.path.abspath(path) in skipped:
            continue
        inventory.snapshots[module_name_from_snapshot(path)] = path

    logs_root = os.path.join(temp_root, "logs")
    for module_dir in scan_entries(logs_root, DIRECTORIES).entries:
        log_path = os.path.join(module_dir, EXECUTION_LOG)
        if os.path.isfile(log_path):
            inventory.execution_logs[os.path.basename(module_dir)] = log_path

    maintenance = os.path.join(logs_root, MAINTENANCE_LOG)
    if os.path.isfile(maintenance):
        inventory.maintenance_log = maintenance

    logger.info(
        "Discovered %d audit snapshot(s), %d execution log(s)",
        len(inventory.snapshots), len(inventory.execution_logs),
    )
    return inventory


def newest_mtime(paths: list[str]) -> str | None:
    """ISO-8601 UTC timestamp of the most recently modified path, if any."""
    latest = None
    for path in paths:
        try:
            mtime = os.path.getmtime(path)
        except OSError:
            continue
        if latest is None or mtime > latest:
            latest = mtime
    if latest is None:
        return None
    return datetime.fromtimestamp(latest, tz=timezone.utc).isoformat()
