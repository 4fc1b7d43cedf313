"""Best-effort parsing of execution-log lines into structured facts.

Line grammars are tried in order, first match wins:
  1. Structured entry  '[<timestamp>] [<LEVEL>] [<Component>] <message>'
  2. Legacy marker     '...[<timestamp>]...[<LEVEL>]...<message>'
  3. Performance       'Completed ... in <N>(ms|s)' / 'Duration: <N>(ms|s)'
  4. Operation count   '<N> ... removed' / 'removed: <N>'

Entries at INFO level are additionally mined for a modification
(install/remove, service, registry, optimization) and a task detail
(start/complete/progress). Lines matching nothing yield None.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from log_aggregator.models import (
    DurationSample,
    LogEvent,
    Modification,
    OperationCount,
    TaskDetail,
)

ENTRY = "entry"
DURATION = "duration"
COUNT = "count"

DEFAULT_COMPONENT = "GENERAL"

# ---------------------------------------------------------------------------
# Compiled regex patterns
# ---------------------------------------------------------------------------

_STRUCTURED_RE = re.compile(
    r'^\[(?P<timestamp>[^\]]+)\]\s*'
    r'\[(?P<level>[A-Za-z]+)\]\s*'
    r'\[(?P<component>[^\]]+)\]\s*'
    r'(?P<message>.*)$'
)

_LEGACY_RE = re.compile(
    r'\[(?P<timestamp>\d{4}-\d{2}-\d{2}[ T]\d{1,2}:\d{2}(?::\d{2})?[^\]]*)\]'
    r'.*?\[(?P<level>[A-Za-z]+)\]\s*'
    r'(?P<message>.*)$'
)

_UNIT = r'(?P<unit>ms|milliseconds?|s|secs?|seconds?)\b'
_NUMBER = r'(?P<value>\d+(?:\.\d+)?)'

_COMPLETED_RE = re.compile(r'\bCompleted\s+(?P<operation>.+?)\s+in\s+' + _NUMBER + r'\s*' + _UNIT, re.I)
_DURATION_RE = re.compile(r'\bDuration:\s*' + _NUMBER + r'\s*' + _UNIT, re.I)

_COUNT_OPERATIONS = r'(?P<operation>installed|removed|optimized|disabled|updated|processed|detected)'
_COUNT_FORWARD_RE = re.compile(r'\b(?P<count>\d+)\s+(?:[\w-]+\s+){0,2}?' + _COUNT_OPERATIONS + r'\b', re.I)
_COUNT_REVERSE_RE = re.compile(r'\b' + _COUNT_OPERATIONS + r'\s*[:=]?\s*(?P<count>\d+)\b', re.I)

# Log level spellings seen in module logs -> canonical level
_LEVEL_ALIASES = {
    "INFO": "INFO",
    "INFORMATION": "INFO",
    "SUCCESS": "SUCCESS",
    "OK": "SUCCESS",
    "WARN": "WARN",
    "WARNING": "WARN",
    "ERROR": "ERROR",
    "ERR": "ERROR",
    "FAILED": "FAILED",
    "FAIL": "FAILED",
    "FAILURE": "FAILED",
}

_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M:%S.%f",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
)


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


@dataclass
class ParsedLine:
    kind: str
    event: LogEvent | None = None
    duration: DurationSample | None = None
    count: OperationCount | None = None
    modification: Modification | None = None
    task: TaskDetail | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_level(level: str) -> str | None:
    """Map a raw level token to INFO/SUCCESS/WARN/ERROR/FAILED, or None."""
    return _LEVEL_ALIASES.get(level.strip().upper())


def to_seconds(value: str, unit: str) -> float:
    seconds = float(value)
    if unit.lower().startswith("m"):
        seconds /= 1000.0
    return round(seconds, 3)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse the timestamp formats modules write; None if unrecognized."""
    if not value:
        return None
    value = value.strip()
    if value.endswith(("Z", "z")):
        # fromisoformat only accepts a Z suffix from 3.11 on
        value = value[:-1] + "+00:00"
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _clean_target(target: str) -> str:
    return target.strip().rstrip(".").strip().strip("'\"")


# ---------------------------------------------------------------------------
# Secondary extraction (INFO messages)
# ---------------------------------------------------------------------------

_ACTIONS = {
    "installed": "Install",
    "removed": "Remove",
    "uninstalled": "Remove",
    "started": "Start",
    "stopped": "Stop",
    "enabled": "Enable",
    "disabled": "Disable",
    "set": "Set",
    "modified": "Modify",
    "created": "Create",
    "deleted": "Delete",
    "applied": "Apply",
}

# (pattern, type, category); registry/service/optimization come before the
# application family so "Removed registry key X" is not read as an app removal.
_MODIFICATION_PATTERNS = [
    (re.compile(r'\b(?P<action>set|modified|created|deleted|removed)\s+registry\s+(?:key|value)\s*:?\s*(?P<target>.+)$', re.I),
     "Registry", "Registry"),
    (re.compile(r'\bregistry\s+(?:key|value)\s+(?P<target>.+?)\s+(?:was\s+|has been\s+)?(?P<action>set|modified|created|deleted|removed)\b', re.I),
     "Registry", "Registry"),
    (re.compile(r'\b(?P<action>started|stopped|enabled|disabled)\s+service\s*:?\s*(?P<target>.+)$', re.I),
     "Service", "Services"),
    (re.compile(r'\bservice\s+(?P<target>.+?)\s+(?:was\s+|has been\s+)?(?P<action>started|stopped|enabled|disabled)\b', re.I),
     "Service", "Services"),
    (re.compile(r'\b(?P<action>applied|enabled|disabled)\s+optimization\s*:?\s*(?P<target>.+)$', re.I),
     "Optimization", "Performance"),
    (re.compile(r'\boptimization\s+(?P<target>.+?)\s+(?:was\s+|has been\s+)?(?P<action>applied|enabled|disabled)\b', re.I),
     "Optimization", "Performance"),
    (re.compile(r'^(?:successfully\s+)?(?P<action>installed|removed|uninstalled)\s+(?:(?:app|application|package)\s*:?\s*)?(?P<target>.+)$', re.I),
     "Application", "Software"),
]

_TASK_START_RE = re.compile(
    r'^Starting\s+(?P<task>(?:.+?\s+)?(?:analysis|installation|removal|optimization|processing))\b', re.I
)
_TASK_COMPLETE_RE = re.compile(r'^Completed\s+(?P<task>.+?)\s+in\s+' + _NUMBER + r'\s*' + _UNIT, re.I)
_TASK_PROGRESS_RE = re.compile(
    r'^Processing\s+(?P<count>\d+)\s+(?P<unit>items|apps|applications|services|packages|tasks|entries|files)\b', re.I
)

_GENERIC_ERROR_RE = re.compile(r'\b(?:error|errors|exception|failed|failure)\b', re.I)
_HARDENING_SIGNAL_RE = re.compile(r'\b(?:success|successfully|succeeded|disabled|privacy)\b', re.I)


def extract_modification(message: str, timestamp: str | None = None) -> Modification | None:
    """Recognize a system modification described by an INFO message."""
    text = message.strip()
    for pattern, mod_type, category in _MODIFICATION_PATTERNS:
        m = pattern.search(text)
        if not m:
            continue
        target = _clean_target(m.group("target"))
        if not target:
            continue
        return Modification(
            type=mod_type,
            action=_ACTIONS[m.group("action").lower()],
            target=target,
            category=category,
            timestamp=timestamp,
        )
    return None


def extract_task_detail(message: str, timestamp: str | None = None) -> TaskDetail | None:
    """Recognize task start / completion / progress markers."""
    text = message.strip()

    m = _TASK_START_RE.match(text)
    if m:
        return TaskDetail(type="TaskStart", task=m.group("task").strip(), timestamp=timestamp)

    m = _TASK_COMPLETE_RE.match(text)
    if m:
        return TaskDetail(
            type="TaskComplete",
            task=m.group("task").strip(),
            timestamp=timestamp,
            duration_seconds=to_seconds(m.group("value"), m.group("unit")),
        )

    m = _TASK_PROGRESS_RE.match(text)
    if m:
        return TaskDetail(
            type="TaskProgress",
            task="Processing",
            timestamp=timestamp,
            count=int(m.group("count")),
            unit=m.group("unit").lower(),
        )
    return None


def match_generic_error(line: str) -> bool:
    """True when a free-text line mentions an error/failure keyword."""
    return bool(_GENERIC_ERROR_RE.search(line))


def match_hardening_signal(line: str) -> bool:
    """True when a line reports a successful privacy or telemetry-hardening step."""
    return bool(_HARDENING_SIGNAL_RE.search(line))


# ---------------------------------------------------------------------------
# Line grammars
# ---------------------------------------------------------------------------


def _entry(timestamp: str, level: str, component: str, message: str) -> ParsedLine:
    timestamp = timestamp.strip()
    message = message.strip()
    event = LogEvent(timestamp=timestamp, level=level, component=component.strip(), message=message)
    parsed = ParsedLine(kind=ENTRY, event=event)
    if level == "INFO":
        parsed.modification = extract_modification(message, timestamp)
        if parsed.modification is not None:
            event.operation = parsed.modification.action
            event.target = parsed.modification.target
        parsed.task = extract_task_detail(message, timestamp)
    return parsed


def _handle_structured(m: re.Match, component_hint: str) -> ParsedLine | None:
    level = normalize_level(m.group("level"))
    if level is None:
        return None
    return _entry(m.group("timestamp"), level, m.group("component"), m.group("message"))


def _handle_legacy(m: re.Match, component_hint: str) -> ParsedLine | None:
    level = normalize_level(m.group("level"))
    if level is None:
        return None
    return _entry(m.group("timestamp"), level, component_hint, m.group("message"))


def _handle_completed(m: re.Match, component_hint: str) -> ParsedLine:
    sample = DurationSample(
        operation=m.group("operation").strip(),
        seconds=to_seconds(m.group("value"), m.group("unit")),
    )
    return ParsedLine(kind=DURATION, duration=sample)


def _handle_duration(m: re.Match, component_hint: str) -> ParsedLine:
    operation = m.string[: m.start()].strip(" -:,;") or component_hint
    sample = DurationSample(operation=operation, seconds=to_seconds(m.group("value"), m.group("unit")))
    return ParsedLine(kind=DURATION, duration=sample)


def _handle_count(m: re.Match, component_hint: str) -> ParsedLine:
    return ParsedLine(
        kind=COUNT,
        count=OperationCount(operation=m.group("operation").lower(), count=int(m.group("count"))),
    )


_Handler = Callable[[re.Match, str], ParsedLine | None]

_LINE_GRAMMARS: list[tuple[re.Pattern, str, _Handler]] = [
    (_STRUCTURED_RE, "match", _handle_structured),
    (_LEGACY_RE, "search", _handle_legacy),
    (_COMPLETED_RE, "search", _handle_completed),
    (_DURATION_RE, "search", _handle_duration),
    (_COUNT_FORWARD_RE, "search", _handle_count),
    (_COUNT_REVERSE_RE, "search", _handle_count),
]


def parse_line(line: str, component_hint: str = DEFAULT_COMPONENT) -> ParsedLine | None:
    """Parse one log line; returns None when no grammar applies.

    *component_hint* names the component for legacy lines, which carry none.
    """
    stripped = line.strip()
    if not stripped:
        return None

    for pattern, mode, handler in _LINE_GRAMMARS:
        m = pattern.match(stripped) if mode == "match" else pattern.search(stripped)
        if m is None:
            continue
        result = handler(m, component_hint)
        if result is not None:
            return result
    return None
