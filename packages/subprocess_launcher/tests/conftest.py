from __future__ import annotations

import textwrap
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any

import pytest
import structlog

from result_events import InputStreamSource, LogDataType, TestDescription, TestInvocationListener

_CHILD_PRELUDE = """
import os
import sys
from pathlib import Path

from invocation_context import InvocationContext
from result_events import SubprocessResultsReporter, TestDescription

report = SubprocessResultsReporter(
    Path(sys.argv[sys.argv.index("--subprocess-report-file") + 1])
)
context = InvocationContext()
context.add_invocation_attribute("child_attr", "yes")
report.invocation_started(context)
report.test_run_started("child-run", 1)
test = TestDescription("Child", "works")
report.test_started(test)
print("hello stdout global=" + str(os.environ.get("HARNESS_GLOBAL_CONFIG")), flush=True)
print("hello stderr", file=sys.stderr, flush=True)
"""

CHILDREN = {
    "child_ok": _CHILD_PRELUDE
    + """
report.test_ended(test, {})
report.test_run_ended(5, {})
""",
    "child_fail": _CHILD_PRELUDE
    + """
report.test_failed(test, "boom")
report.test_ended(test, {})
sys.exit(3)
""",
    "child_sleep": _CHILD_PRELUDE
    + """
import time
time.sleep(60)
""",
    "child_log_then_sleep": _CHILD_PRELUDE
    + """
import time
from result_events import ByteArrayInputStreamSource, LogDataType

report.test_log("partial", LogDataType.TEXT, ByteArrayInputStreamSource(b"partial output"))
# A copy whose record never made it into the channel.
orphan = report.report_file.parent / "subprocess-log-orphan_0.txt"
orphan.write_bytes(b"orphan")
time.sleep(60)
""",
}


class RecordingListener(TestInvocationListener):
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []
        self.logs: dict[str, bytes] = {}

    def invocation_failed(self, cause: BaseException) -> None:
        self.calls.append(("invocation_failed", str(cause)))

    def test_run_started(self, run_name: str, test_count: int) -> None:
        self.calls.append(("test_run_started", run_name, test_count))

    def test_run_failed(self, message: str) -> None:
        self.calls.append(("test_run_failed", message))

    def test_run_ended(self, elapsed_ms: int, metrics: Mapping[str, str]) -> None:
        self.calls.append(("test_run_ended", dict(metrics)))

    def test_started(self, test: TestDescription) -> None:
        self.calls.append(("test_started", str(test)))

    def test_failed(self, test: TestDescription, trace: str) -> None:
        self.calls.append(("test_failed", str(test), trace))

    def test_ended(self, test: TestDescription, metrics: Mapping[str, str]) -> None:
        self.calls.append(("test_ended", str(test)))

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        stream = source.create_input_stream()
        try:
            self.logs[data_name] = stream.read()
        finally:
            stream.close()
        self.calls.append(("test_log", data_name))

    def call_names(self) -> list[str]:
        return [c[0] for c in self.calls]

    def log_named(self, prefix: str) -> bytes:
        matches = [data for name, data in self.logs.items() if name.startswith(prefix)]
        assert len(matches) == 1, f"expected one log starting with {prefix!r}: {list(self.logs)}"
        return matches[0]


class BrokenLogListener(RecordingListener):
    """Fails to store the first log it is handed."""

    def __init__(self) -> None:
        super().__init__()
        self.rejected: list[str] = []

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        if not self.rejected:
            self.rejected.append(data_name)
            raise OSError("log store unavailable")
        super().test_log(data_name, data_type, source)


@pytest.fixture
def recording_listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def broken_log_listener() -> BrokenLogListener:
    return BrokenLogListener()


@pytest.fixture
def build_root(tmp_path: Path) -> Path:
    root = tmp_path / "build"
    root.mkdir()
    for module, source in CHILDREN.items():
        (root / f"{module}.py").write_text(textwrap.dedent(source), encoding="utf-8")
    return root


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
