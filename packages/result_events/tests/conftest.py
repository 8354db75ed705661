from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from result_events import InputStreamSource, LogDataType, TestDescription, TestInvocationListener


class RecordingListener(TestInvocationListener):
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.logs: dict[str, bytes] = {}
        self.failures: list[BaseException] = []

    def invocation_failed(self, cause: BaseException) -> None:
        self.failures.append(cause)
        self.calls.append(("invocation_failed", str(cause)))

    def test_run_started(self, run_name: str, test_count: int) -> None:
        self.calls.append(("test_run_started", run_name, test_count))

    def test_run_failed(self, message: str) -> None:
        self.calls.append(("test_run_failed", message))

    def test_run_ended(self, elapsed_ms: int, metrics: Mapping[str, str]) -> None:
        self.calls.append(("test_run_ended", elapsed_ms, dict(metrics)))

    def test_started(self, test: TestDescription) -> None:
        self.calls.append(("test_started", str(test)))

    def test_failed(self, test: TestDescription, trace: str) -> None:
        self.calls.append(("test_failed", str(test), trace))

    def test_assumption_failure(self, test: TestDescription, trace: str) -> None:
        self.calls.append(("test_assumption_failure", str(test), trace))

    def test_ignored(self, test: TestDescription) -> None:
        self.calls.append(("test_ignored", str(test)))

    def test_ended(self, test: TestDescription, metrics: Mapping[str, str]) -> None:
        self.calls.append(("test_ended", str(test), dict(metrics)))

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        stream = source.create_input_stream()
        try:
            self.logs[data_name] = stream.read()
        finally:
            stream.close()
        self.calls.append(("test_log", data_name, data_type))

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def recording_listener() -> RecordingListener:
    return RecordingListener()
