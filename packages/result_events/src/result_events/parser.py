from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog
from invocation_context import IllegalStateError, InvocationContext
from jsonschema import Draft202012Validator

from result_events.events import (
    EVENT_DATA_SCHEMAS,
    EVENT_RECORD_SCHEMA,
    EventType,
    iter_event_lines,
)
from result_events.listener import (
    FileInputStreamSource,
    LogDataType,
    TestDescription,
    TestInvocationListener,
)

logger = structlog.get_logger(__name__)

_RECORD_VALIDATOR = Draft202012Validator(EVENT_RECORD_SCHEMA)
_DATA_VALIDATORS: dict[EventType, Draft202012Validator] = {
    event_type: Draft202012Validator(schema) for event_type, schema in EVENT_DATA_SCHEMAS.items()
}


@dataclass(frozen=True)
class ParseResult:
    file_found: bool
    replayed: int = 0
    skipped: int = 0


def _format_errors(validator: Draft202012Validator, payload: Any) -> list[str]:
    errors = sorted(validator.iter_errors(payload), key=lambda e: str(e.path))
    formatted: list[str] = []
    for error in errors:
        path = "$"
        for part in error.path:
            path += f"[{part!r}]" if isinstance(part, int) else f".{part}"
        formatted.append(f"{path}: {error.message}")
    return formatted


def _test_of(data: dict[str, Any]) -> TestDescription:
    return TestDescription(class_name=data["class_name"], test_name=data["test_name"])


class SubprocessResultsParser:
    """
    Replays the event channel written by a child process into `listener`.

    Records are decoded one line at a time and replayed in file order. A
    record that does not decode, does not match the schema, or references a
    log file that is gone is logged and skipped; replay carries on with the
    next line. The child may have been killed mid-write, so a truncated last
    line is expected rather than exceptional.

    When `context` is given, the child's invocation attributes are merged into
    it. A context that is already locked makes that one record a skip.

    `TEST_LOG` records name files the parent forwards and then deletes, so
    only paths inside the log directory are honoured: `log_dir` when given,
    else the directory holding the event file. Without either, every
    `TEST_LOG` record is skipped.
    """

    def __init__(
        self,
        listener: TestInvocationListener,
        *,
        context: InvocationContext | None = None,
        log_dir: Path | None = None,
    ) -> None:
        self._listener = listener
        self._context = context
        self._log_dir = log_dir
        self._log_root: Path | None = None
        self._handlers: dict[EventType, Callable[[dict[str, Any]], bool]] = {
            EventType.INVOCATION_STARTED: self._on_invocation_started,
            EventType.INVOCATION_FAILED: self._on_invocation_failed,
            EventType.TEST_RUN_STARTED: self._on_test_run_started,
            EventType.TEST_RUN_FAILED: self._on_test_run_failed,
            EventType.TEST_RUN_ENDED: self._on_test_run_ended,
            EventType.TEST_STARTED: self._on_test_started,
            EventType.TEST_FAILED: self._on_test_failed,
            EventType.TEST_ASSUMPTION_FAILURE: self._on_test_assumption_failure,
            EventType.TEST_IGNORED: self._on_test_ignored,
            EventType.TEST_ENDED: self._on_test_ended,
            EventType.TEST_LOG: self._on_test_log,
        }

    def parse_file(self, path: Path | None) -> ParseResult:
        if path is None or not path.exists():
            logger.debug("event_channel_missing", path=str(path) if path else None)
            return ParseResult(file_found=False)
        self._log_root = self._log_dir if self._log_dir is not None else path.parent
        return self._replay(iter_event_lines(path), file_found=True)

    def parse_lines(self, lines: Iterable[str]) -> ParseResult:
        numbered = (
            (idx, line.strip()) for idx, line in enumerate(lines, start=1) if line.strip()
        )
        self._log_root = self._log_dir
        return self._replay(numbered, file_found=True)

    def _replay(self, numbered: Iterable[tuple[int, str]], *, file_found: bool) -> ParseResult:
        replayed = 0
        skipped = 0
        for line_number, raw in numbered:
            decoded = self._decode(line_number, raw)
            if decoded is None:
                skipped += 1
                continue
            event_type, data = decoded
            if self._handlers[event_type](data):
                replayed += 1
            else:
                skipped += 1
        if skipped:
            logger.warning("event_channel_records_skipped", replayed=replayed, skipped=skipped)
        return ParseResult(file_found=file_found, replayed=replayed, skipped=skipped)

    def _decode(self, line_number: int, raw: str) -> tuple[EventType, dict[str, Any]] | None:
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(
                "event_record_malformed", line=line_number, error=str(e), excerpt=raw[:200]
            )
            return None

        errors = _format_errors(_RECORD_VALIDATOR, record)
        if errors:
            logger.warning("event_record_invalid", line=line_number, errors=errors)
            return None

        event_type = EventType(record["type"])
        data = record["data"]
        errors = _format_errors(_DATA_VALIDATORS[event_type], data)
        if errors:
            logger.warning(
                "event_payload_invalid",
                line=line_number,
                event_type=event_type.value,
                errors=errors,
            )
            return None
        return event_type, data

    # Handlers return False when the record had to be skipped.

    def _on_invocation_started(self, data: dict[str, Any]) -> bool:
        attributes = data.get("attributes") or {}
        if self._context is None or not attributes:
            return True
        try:
            self._context.add_invocation_attributes(attributes)
        except IllegalStateError as e:
            logger.warning("subprocess_attributes_dropped", reason=str(e), keys=sorted(attributes))
            return False
        return True

    def _on_invocation_failed(self, data: dict[str, Any]) -> bool:
        self._listener.invocation_failed(RuntimeError(data["cause"]))
        return True

    def _on_test_run_started(self, data: dict[str, Any]) -> bool:
        self._listener.test_run_started(data["run_name"], int(data["test_count"]))
        return True

    def _on_test_run_failed(self, data: dict[str, Any]) -> bool:
        self._listener.test_run_failed(data["message"])
        return True

    def _on_test_run_ended(self, data: dict[str, Any]) -> bool:
        self._listener.test_run_ended(int(data["elapsed_ms"]), dict(data.get("metrics") or {}))
        return True

    def _on_test_started(self, data: dict[str, Any]) -> bool:
        self._listener.test_started(_test_of(data))
        return True

    def _on_test_failed(self, data: dict[str, Any]) -> bool:
        self._listener.test_failed(_test_of(data), data["trace"])
        return True

    def _on_test_assumption_failure(self, data: dict[str, Any]) -> bool:
        self._listener.test_assumption_failure(_test_of(data), data["trace"])
        return True

    def _on_test_ignored(self, data: dict[str, Any]) -> bool:
        self._listener.test_ignored(_test_of(data))
        return True

    def _on_test_ended(self, data: dict[str, Any]) -> bool:
        self._listener.test_ended(_test_of(data), dict(data.get("metrics") or {}))
        return True

    def _in_log_root(self, log_path: Path) -> bool:
        if self._log_root is None:
            return False
        return log_path.resolve().is_relative_to(self._log_root.resolve())

    def _on_test_log(self, data: dict[str, Any]) -> bool:
        log_path = Path(data["path"])
        if not self._in_log_root(log_path):
            logger.warning(
                "subprocess_log_outside_log_dir",
                data_name=data["data_name"],
                path=str(log_path),
                log_dir=str(self._log_root),
            )
            return False
        if not log_path.is_file():
            logger.warning(
                "subprocess_log_missing", data_name=data["data_name"], path=str(log_path)
            )
            return False
        source = FileInputStreamSource(log_path)
        try:
            self._listener.test_log(data["data_name"], LogDataType.parse(data["data_type"]), source)
        finally:
            source.cancel()
            log_path.unlink(missing_ok=True)
        return True
