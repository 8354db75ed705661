from result_events.events import (
    EVENT_DATA_SCHEMAS,
    EVENT_RECORD_SCHEMA,
    Event,
    EventType,
    encode_event,
    iter_event_lines,
    make_event,
    utc_now_iso,
    write_events_jsonl,
)
from result_events.listener import (
    ByteArrayInputStreamSource,
    FileInputStreamSource,
    InputStreamSource,
    LogDataType,
    LogFile,
    LogSaver,
    LogSaverListener,
    ResultForwarder,
    TestDescription,
    TestInvocationListener,
)
from result_events.metadata import FileMetadataCollector
from result_events.parser import ParseResult, SubprocessResultsParser
from result_events.reporter import SubprocessResultsReporter

__all__ = [
    "EVENT_DATA_SCHEMAS",
    "EVENT_RECORD_SCHEMA",
    "ByteArrayInputStreamSource",
    "Event",
    "EventType",
    "FileInputStreamSource",
    "FileMetadataCollector",
    "InputStreamSource",
    "LogDataType",
    "LogFile",
    "LogSaver",
    "LogSaverListener",
    "ParseResult",
    "ResultForwarder",
    "SubprocessResultsParser",
    "SubprocessResultsReporter",
    "TestDescription",
    "TestInvocationListener",
    "encode_event",
    "iter_event_lines",
    "make_event",
    "utc_now_iso",
    "write_events_jsonl",
]
