from __future__ import annotations

import re
import shutil
import tempfile
import threading
import time
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from result_events.events import EventType, encode_event, make_event
from result_events.listener import (
    InputStreamSource,
    LogDataType,
    TestDescription,
    TestInvocationListener,
)

if TYPE_CHECKING:
    from invocation_context import InvocationContext

logger = structlog.get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_filename(name: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub("_", name).strip(".") or "log"


def _test_payload(test: TestDescription, **extra: Any) -> dict[str, Any]:
    return {"class_name": test.class_name, "test_name": test.test_name, **extra}


class SubprocessResultsReporter(TestInvocationListener):
    """
    Child-side listener that serializes every callback into the event channel.

    Each record is appended and flushed on its own line under a lock, so a
    child that dies mid-run leaves at most one truncated trailing record.
    Log artifacts are copied next to the channel (or into `log_dir`) and the
    record carries the copy's path; the parent deletes the copy once replayed.
    """

    def __init__(self, report_file: Path, *, log_dir: Path | None = None) -> None:
        self._report_file = report_file
        self._log_dir = log_dir
        self._lock = threading.Lock()
        self._report_file.parent.mkdir(parents=True, exist_ok=True)

    @property
    def report_file(self) -> Path:
        return self._report_file

    def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        line = encode_event(make_event(event_type, data))
        with self._lock:
            with self._report_file.open("a", encoding="utf-8", newline="\n") as f:
                f.write(line)
                f.flush()

    def invocation_started(self, context: InvocationContext) -> None:
        self._emit(
            EventType.INVOCATION_STARTED,
            {
                "start_time_ms": int(time.time() * 1000),
                "attributes": context.get_attributes().to_dict(),
            },
        )

    def invocation_failed(self, cause: BaseException) -> None:
        self._emit(EventType.INVOCATION_FAILED, {"cause": f"{type(cause).__name__}: {cause}"})

    def test_run_started(self, run_name: str, test_count: int) -> None:
        self._emit(EventType.TEST_RUN_STARTED, {"run_name": run_name, "test_count": test_count})

    def test_run_failed(self, message: str) -> None:
        self._emit(EventType.TEST_RUN_FAILED, {"message": message})

    def test_run_ended(self, elapsed_ms: int, metrics: Mapping[str, str]) -> None:
        self._emit(
            EventType.TEST_RUN_ENDED,
            {
                "elapsed_ms": int(elapsed_ms),
                "metrics": {str(k): str(v) for k, v in metrics.items()},
            },
        )

    def test_started(self, test: TestDescription) -> None:
        self._emit(EventType.TEST_STARTED, _test_payload(test))

    def test_failed(self, test: TestDescription, trace: str) -> None:
        self._emit(EventType.TEST_FAILED, _test_payload(test, trace=trace))

    def test_assumption_failure(self, test: TestDescription, trace: str) -> None:
        self._emit(EventType.TEST_ASSUMPTION_FAILURE, _test_payload(test, trace=trace))

    def test_ignored(self, test: TestDescription) -> None:
        self._emit(EventType.TEST_IGNORED, _test_payload(test))

    def test_ended(self, test: TestDescription, metrics: Mapping[str, str]) -> None:
        self._emit(
            EventType.TEST_ENDED,
            _test_payload(test, metrics={str(k): str(v) for k, v in metrics.items()}),
        )

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        log_dir = self._log_dir or self._report_file.parent
        log_dir.mkdir(parents=True, exist_ok=True)
        fd, raw_path = tempfile.mkstemp(
            prefix=f"subprocess-log-{_safe_filename(data_name)}_",
            suffix=f".{data_type.file_ext}",
            dir=log_dir,
        )
        with open(fd, "wb") as out:
            stream = source.create_input_stream()
            try:
                shutil.copyfileobj(stream, out)
            finally:
                stream.close()
        self._emit(
            EventType.TEST_LOG,
            {"data_name": data_name, "data_type": data_type.value, "path": raw_path},
        )
        logger.debug("subprocess_log_saved", data_name=data_name, path=raw_path)
