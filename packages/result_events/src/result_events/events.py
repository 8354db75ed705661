from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

Event = dict[str, Any]


class EventType(str, Enum):
    INVOCATION_STARTED = "INVOCATION_STARTED"
    INVOCATION_FAILED = "INVOCATION_FAILED"
    TEST_RUN_STARTED = "TEST_RUN_STARTED"
    TEST_RUN_FAILED = "TEST_RUN_FAILED"
    TEST_RUN_ENDED = "TEST_RUN_ENDED"
    TEST_STARTED = "TEST_STARTED"
    TEST_FAILED = "TEST_FAILED"
    TEST_ASSUMPTION_FAILURE = "TEST_ASSUMPTION_FAILURE"
    TEST_IGNORED = "TEST_IGNORED"
    TEST_ENDED = "TEST_ENDED"
    TEST_LOG = "TEST_LOG"


_TEST_ID_PROPERTIES: dict[str, Any] = {
    "class_name": {"type": "string"},
    "test_name": {"type": "string"},
}
_METRICS_SCHEMA: dict[str, Any] = {"type": "object", "additionalProperties": {"type": "string"}}

EVENT_RECORD_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "required": ["ts", "type", "data"],
    "properties": {
        "ts": {"type": "string"},
        "type": {"enum": [t.value for t in EventType]},
        "data": {"type": "object"},
    },
}

EVENT_DATA_SCHEMAS: dict[EventType, dict[str, Any]] = {
    EventType.INVOCATION_STARTED: {
        "type": "object",
        "properties": {
            "start_time_ms": {"type": "integer"},
            "attributes": {
                "type": "object",
                "additionalProperties": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
    EventType.INVOCATION_FAILED: {
        "type": "object",
        "required": ["cause"],
        "properties": {"cause": {"type": "string"}},
    },
    EventType.TEST_RUN_STARTED: {
        "type": "object",
        "required": ["run_name", "test_count"],
        "properties": {
            "run_name": {"type": "string"},
            "test_count": {"type": "integer", "minimum": 0},
        },
    },
    EventType.TEST_RUN_FAILED: {
        "type": "object",
        "required": ["message"],
        "properties": {"message": {"type": "string"}},
    },
    EventType.TEST_RUN_ENDED: {
        "type": "object",
        "required": ["elapsed_ms"],
        "properties": {"elapsed_ms": {"type": "integer"}, "metrics": _METRICS_SCHEMA},
    },
    EventType.TEST_STARTED: {
        "type": "object",
        "required": ["class_name", "test_name"],
        "properties": dict(_TEST_ID_PROPERTIES),
    },
    EventType.TEST_FAILED: {
        "type": "object",
        "required": ["class_name", "test_name", "trace"],
        "properties": {**_TEST_ID_PROPERTIES, "trace": {"type": "string"}},
    },
    EventType.TEST_ASSUMPTION_FAILURE: {
        "type": "object",
        "required": ["class_name", "test_name", "trace"],
        "properties": {**_TEST_ID_PROPERTIES, "trace": {"type": "string"}},
    },
    EventType.TEST_IGNORED: {
        "type": "object",
        "required": ["class_name", "test_name"],
        "properties": dict(_TEST_ID_PROPERTIES),
    },
    EventType.TEST_ENDED: {
        "type": "object",
        "required": ["class_name", "test_name"],
        "properties": {**_TEST_ID_PROPERTIES, "metrics": _METRICS_SCHEMA},
    },
    EventType.TEST_LOG: {
        "type": "object",
        "required": ["data_name", "data_type", "path"],
        "properties": {
            "data_name": {"type": "string"},
            "data_type": {"type": "string"},
            "path": {"type": "string"},
        },
    },
}


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).replace(microsecond=0).isoformat()


def make_event(
    event_type: EventType | str, data: dict[str, Any], *, ts: str | None = None
) -> Event:
    type_value = event_type.value if isinstance(event_type, EventType) else event_type
    return {"ts": ts or utc_now_iso(), "type": type_value, "data": data}


def encode_event(event: Event) -> str:
    return json.dumps(event, ensure_ascii=False) + "\n"


def write_events_jsonl(path: Path, events: Iterable[Event]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8", newline="\n") as f:
        for event in events:
            f.write(encode_event(event))


def iter_event_lines(path: Path) -> Iterator[tuple[int, str]]:
    """Yield `(line_number, raw_line)` for every non-blank line; decoding is left to callers."""

    with path.open("r", encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, start=1):
            raw = line.strip()
            if not raw:
                continue
            yield line_number, raw
