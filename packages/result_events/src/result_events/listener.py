from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from io import BytesIO
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from invocation_context import InvocationContext


class LogDataType(str, Enum):
    TEXT = "TEXT"
    JSON = "JSON"
    XML = "XML"
    HTML = "HTML"
    PNG = "PNG"
    ZIP = "ZIP"
    UNKNOWN = "UNKNOWN"

    @property
    def file_ext(self) -> str:
        return _FILE_EXTENSIONS[self]

    @classmethod
    def parse(cls, raw: str) -> LogDataType:
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return cls.UNKNOWN


_FILE_EXTENSIONS: dict[LogDataType, str] = {
    LogDataType.TEXT: "txt",
    LogDataType.JSON: "json",
    LogDataType.XML: "xml",
    LogDataType.HTML: "html",
    LogDataType.PNG: "png",
    LogDataType.ZIP: "zip",
    LogDataType.UNKNOWN: "dat",
}


@dataclass(frozen=True)
class TestDescription:
    __test__ = False

    class_name: str
    test_name: str

    def __str__(self) -> str:
        return f"{self.class_name}#{self.test_name}"


@dataclass(frozen=True)
class LogFile:
    path: str
    url: str | None = None
    data_type: LogDataType = LogDataType.TEXT


class InputStreamSource(Protocol):
    def create_input_stream(self) -> IO[bytes]: ...

    def size(self) -> int: ...

    def cancel(self) -> None: ...


class FileInputStreamSource:
    """Hands out independent read handles on a file; `cancel` closes all of them."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._streams: list[IO[bytes]] = []

    @property
    def path(self) -> Path:
        return self._path

    def create_input_stream(self) -> IO[bytes]:
        stream = self._path.open("rb")
        self._streams.append(stream)
        return stream

    def size(self) -> int:
        try:
            return int(self._path.stat().st_size)
        except OSError:
            return 0

    def cancel(self) -> None:
        streams, self._streams = self._streams, []
        for stream in streams:
            stream.close()


class ByteArrayInputStreamSource:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def create_input_stream(self) -> IO[bytes]:
        return BytesIO(self._data)

    def size(self) -> int:
        return len(self._data)

    def cancel(self) -> None:
        self._data = b""


class TestInvocationListener:
    """
    Callback surface for test-lifecycle and log-artifact events.

    Every callback is a no-op here; reporters override what they need.
    """

    __test__ = False

    def invocation_started(self, context: InvocationContext) -> None:
        pass

    def invocation_failed(self, cause: BaseException) -> None:
        pass

    def invocation_ended(self, elapsed_ms: int) -> None:
        pass

    def test_run_started(self, run_name: str, test_count: int) -> None:
        pass

    def test_run_failed(self, message: str) -> None:
        pass

    def test_run_ended(self, elapsed_ms: int, metrics: Mapping[str, str]) -> None:
        pass

    def test_started(self, test: TestDescription) -> None:
        pass

    def test_failed(self, test: TestDescription, trace: str) -> None:
        pass

    def test_assumption_failure(self, test: TestDescription, trace: str) -> None:
        pass

    def test_ignored(self, test: TestDescription) -> None:
        pass

    def test_ended(self, test: TestDescription, metrics: Mapping[str, str]) -> None:
        pass

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        pass


class LogSaver(Protocol):
    def save_log_data(
        self, data_name: str, data_type: LogDataType, stream: IO[bytes]
    ) -> LogFile: ...

    def save_log_data_raw(self, data_name: str, ext: str, stream: IO[bytes]) -> LogFile: ...


class LogSaverListener(TestInvocationListener):
    """Listener that is told where each log artifact ended up after it was saved."""

    def test_log_saved(
        self,
        data_name: str,
        data_type: LogDataType,
        source: InputStreamSource,
        log_file: LogFile,
    ) -> None:
        pass

    def set_log_saver(self, log_saver: LogSaver) -> None:
        pass


class ResultForwarder(TestInvocationListener):
    """Forwards every callback to a list of listeners, in order."""

    def __init__(self, listeners: Iterable[TestInvocationListener]) -> None:
        self._listeners = list(listeners)

    @property
    def listeners(self) -> list[TestInvocationListener]:
        return list(self._listeners)

    def _forward(self, method: str, *args: Any) -> None:
        for listener in self._listeners:
            getattr(listener, method)(*args)

    def invocation_started(self, context: InvocationContext) -> None:
        self._forward("invocation_started", context)

    def invocation_failed(self, cause: BaseException) -> None:
        self._forward("invocation_failed", cause)

    def invocation_ended(self, elapsed_ms: int) -> None:
        self._forward("invocation_ended", elapsed_ms)

    def test_run_started(self, run_name: str, test_count: int) -> None:
        self._forward("test_run_started", run_name, test_count)

    def test_run_failed(self, message: str) -> None:
        self._forward("test_run_failed", message)

    def test_run_ended(self, elapsed_ms: int, metrics: Mapping[str, str]) -> None:
        self._forward("test_run_ended", elapsed_ms, metrics)

    def test_started(self, test: TestDescription) -> None:
        self._forward("test_started", test)

    def test_failed(self, test: TestDescription, trace: str) -> None:
        self._forward("test_failed", test, trace)

    def test_assumption_failure(self, test: TestDescription, trace: str) -> None:
        self._forward("test_assumption_failure", test, trace)

    def test_ignored(self, test: TestDescription) -> None:
        self._forward("test_ignored", test)

    def test_ended(self, test: TestDescription, metrics: Mapping[str, str]) -> None:
        self._forward("test_ended", test, metrics)

    def test_log(self, data_name: str, data_type: LogDataType, source: InputStreamSource) -> None:
        self._forward("test_log", data_name, data_type, source)
