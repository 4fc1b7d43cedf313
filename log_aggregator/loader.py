"""JSON and text artifact loading that always hands back usable data."""

import copy
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Iterable

import jsonschema

from log_aggregator.models import TaskResult

logger = logging.getLogger(__name__)


@dataclass
class LoadResult:
    path: str
    data: Any
    from_default: bool = False
    error: str | None = None


@dataclass
class TextLoadResult:
    path: str
    text: str = ""
    truncated: bool = False
    error: str | None = None


def _required_keys_schema(required_keys: Iterable[str]) -> dict:
    return {"type": "object", "required": sorted(set(required_keys))}


def _fallback(path: str, default: Any, error: str, level: int = logging.WARNING) -> LoadResult:
    logger.log(level, "Using default data for %s: %s", path, error)
    return LoadResult(path=path, data=copy.deepcopy(default), from_default=True, error=error)


def load_json(path: str, required_keys: Iterable[str] | None = None, default: Any = None) -> LoadResult:
    """Load *path* as JSON, checking exists -> readable -> parses -> required keys.

    The first failing check short-circuits to a deep copy of *default*; the
    reason is kept in ``LoadResult.error``. Files written by PowerShell often
    carry a BOM, so content is decoded as ``utf-8-sig``.
    """
    if default is None:
        default = {}

    if not os.path.isfile(path):
        return _fallback(path, default, "file not found", logging.DEBUG)

    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        return _fallback(path, default, f"unreadable: {e}")

    if not raw.strip():
        return _fallback(path, default, "empty file")

    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return _fallback(path, default, f"invalid JSON: {e}")

    if required_keys:
        validator = jsonschema.Draft202012Validator(_required_keys_schema(required_keys))
        messages = [err.message for err in validator.iter_errors(data)]
        if messages:
            return _fallback(path, default, "; ".join(messages))

    return LoadResult(path=path, data=data)


def read_text(path: str, max_bytes: int | None = None) -> TextLoadResult:
    """Read a text log, decoding leniently and capping at *max_bytes*."""
    if not os.path.isfile(path):
        return TextLoadResult(path=path, error="file not found")
    try:
        with open(path, "rb") as f:
            raw = f.read(max_bytes + 1) if max_bytes else f.read()
    except OSError as e:
        logger.warning("Failed to read %s: %s", path, e)
        return TextLoadResult(path=path, error=str(e))

    truncated = bool(max_bytes) and len(raw) > max_bytes
    if truncated:
        raw = raw[:max_bytes]
        logger.warning("Log %s exceeds %d bytes, reading a truncated copy", path, max_bytes)
    text = raw.decode("utf-8-sig", errors="replace")
    return TextLoadResult(path=path, text=text, truncated=truncated)


# ---------------------------------------------------------------------------
# External task results
# ---------------------------------------------------------------------------


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "success", "succeeded", "completed", "ok"):
            return True
        if lowered in ("false", "failed", "failure", "error"):
            return False
    return None


def load_task_results(path: str) -> dict[str, TaskResult]:
    """Load optional externally supplied task outcomes keyed by module.

    Accepts a list of ``{Module, Success, Duration}`` objects or an object
    with a ``Tasks`` list. Malformed entries are skipped.
    """
    result = load_json(path, default=[])
    data = result.data
    if isinstance(data, dict):
        data = data.get("Tasks", [])
    if not isinstance(data, list):
        logger.warning("Task results in %s are not a list, ignoring", path)
        return {}

    tasks: dict[str, TaskResult] = {}
    for entry in data:
        if not isinstance(entry, dict):
            continue
        module = entry.get("Module") or entry.get("TaskName")
        success = _as_bool(entry.get("Success", entry.get("Status")))
        if not module or success is None:
            logger.debug("Skipping malformed task result: %r", entry)
            continue
        try:
            duration = float(entry.get("Duration", 0) or 0)
        except (TypeError, ValueError):
            duration = 0.0
        tasks[str(module)] = TaskResult(module=str(module), success=success, duration_seconds=duration)

    if tasks:
        logger.info("Loaded %d external task result(s) from %s", len(tasks), path)
    return tasks
