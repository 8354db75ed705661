from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from invocation_context import InvocationContext

from result_events import (
    EventType,
    LogDataType,
    SubprocessResultsParser,
    encode_event,
    make_event,
    write_events_jsonl,
)


def _test_id(name: str) -> dict[str, str]:
    return {"class_name": "suite.Example", "test_name": name}


def test_parse_file_replays_events_in_order(tmp_path: Path, recording_listener: Any) -> None:
    events_path = tmp_path / "events.jsonl"
    write_events_jsonl(
        events_path,
        [
            make_event(EventType.TEST_RUN_STARTED, {"run_name": "unit", "test_count": 2}),
            make_event(EventType.TEST_STARTED, _test_id("first")),
            make_event(EventType.TEST_FAILED, {**_test_id("first"), "trace": "boom"}),
            make_event(EventType.TEST_ENDED, {**_test_id("first"), "metrics": {"k": "v"}}),
            make_event(EventType.TEST_STARTED, _test_id("second")),
            make_event(EventType.TEST_IGNORED, _test_id("second")),
            make_event(EventType.TEST_ENDED, _test_id("second")),
            make_event(EventType.TEST_RUN_ENDED, {"elapsed_ms": 12}),
        ],
    )

    result = SubprocessResultsParser(recording_listener).parse_file(events_path)

    assert result.file_found is True
    assert result.replayed == 8
    assert result.skipped == 0
    assert recording_listener.calls == [
        ("test_run_started", "unit", 2),
        ("test_started", "suite.Example#first"),
        ("test_failed", "suite.Example#first", "boom"),
        ("test_ended", "suite.Example#first", {"k": "v"}),
        ("test_started", "suite.Example#second"),
        ("test_ignored", "suite.Example#second"),
        ("test_ended", "suite.Example#second", {}),
        ("test_run_ended", 12, {}),
    ]


def test_truncated_trailing_record_is_skipped(tmp_path: Path, recording_listener: Any) -> None:
    events_path = tmp_path / "events.jsonl"
    good = encode_event(make_event(EventType.TEST_RUN_FAILED, {"message": "device lost"}))
    truncated = encode_event(make_event(EventType.TEST_STARTED, _test_id("x")))[:25]
    events_path.write_text(good + truncated, encoding="utf-8")

    result = SubprocessResultsParser(recording_listener).parse_file(events_path)

    assert recording_listener.calls == [("test_run_failed", "device lost")]
    assert result.replayed == 1
    assert result.skipped == 1


def test_bad_records_do_not_abort_replay(tmp_path: Path, recording_listener: Any) -> None:
    lines = [
        "not json at all",
        json.dumps({"ts": "t", "type": "NOT_A_REAL_EVENT", "data": {}}),
        json.dumps({"ts": "t", "type": "TEST_STARTED", "data": {"class_name": "only"}}),
        json.dumps(["a", "list"]),
        encode_event(make_event(EventType.TEST_STARTED, _test_id("survivor"))),
    ]
    events_path = tmp_path / "events.jsonl"
    events_path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    result = SubprocessResultsParser(recording_listener).parse_file(events_path)

    assert recording_listener.calls == [("test_started", "suite.Example#survivor")]
    assert result.skipped == 4


def test_missing_event_file_is_noop(tmp_path: Path, recording_listener: Any) -> None:
    parser = SubprocessResultsParser(recording_listener)

    assert parser.parse_file(tmp_path / "never_created.jsonl").file_found is False
    assert parser.parse_file(None).replayed == 0
    assert recording_listener.calls == []


def test_test_log_is_forwarded_then_deleted(tmp_path: Path, recording_listener: Any) -> None:
    log_path = tmp_path / "child_log.txt"
    log_path.write_text("child output\n", encoding="utf-8")
    lines = [
        encode_event(
            make_event(
                EventType.TEST_LOG,
                {"data_name": "child_log", "data_type": "TEXT", "path": str(log_path)},
            )
        ),
        encode_event(
            make_event(
                EventType.TEST_LOG,
                {"data_name": "gone", "data_type": "TEXT", "path": str(tmp_path / "gone.txt")},
            )
        ),
    ]

    result = SubprocessResultsParser(recording_listener, log_dir=tmp_path).parse_lines(lines)

    assert recording_listener.calls == [("test_log", "child_log", LogDataType.TEXT)]
    assert recording_listener.logs["child_log"] == b"child output\n"
    assert not log_path.exists()
    assert (result.replayed, result.skipped) == (1, 1)


def test_invocation_started_merges_attributes_into_context(recording_listener: Any) -> None:
    context = InvocationContext()
    line = encode_event(
        make_event(EventType.INVOCATION_STARTED, {"attributes": {"branch": ["main"]}})
    )

    result = SubprocessResultsParser(recording_listener, context=context).parse_lines([line])

    assert result.replayed == 1
    assert context.get_attributes().get("branch") == ["main"]


def test_locked_context_skips_attributes_but_keeps_replaying(recording_listener: Any) -> None:
    context = InvocationContext()
    context.lock_attributes()
    lines = [
        encode_event(make_event(EventType.INVOCATION_STARTED, {"attributes": {"k": ["v"]}})),
        encode_event(make_event(EventType.INVOCATION_FAILED, {"cause": "child crashed"})),
    ]

    result = SubprocessResultsParser(recording_listener, context=context).parse_lines(lines)

    assert (result.replayed, result.skipped) == (1, 1)
    assert recording_listener.calls == [("invocation_failed", "child crashed")]
    assert context.get_attributes().is_empty()


def test_test_log_outside_log_dir_is_never_touched(
    tmp_path: Path, recording_listener: Any
) -> None:
    log_dir = tmp_path / "logs"
    log_dir.mkdir()
    victim = tmp_path / "elsewhere" / "important.txt"
    victim.parent.mkdir()
    victim.write_text("keep me\n", encoding="utf-8")
    escaping = log_dir / ".." / "elsewhere" / "important.txt"
    lines = [
        encode_event(
            make_event(
                EventType.TEST_LOG,
                {"data_name": "victim", "data_type": "TEXT", "path": str(path)},
            )
        )
        for path in (victim, escaping)
    ]

    result = SubprocessResultsParser(recording_listener, log_dir=log_dir).parse_lines(lines)

    assert victim.read_text(encoding="utf-8") == "keep me\n"
    assert recording_listener.calls == []
    assert (result.replayed, result.skipped) == (0, 2)


def test_event_file_directory_is_the_default_log_dir(
    tmp_path: Path, recording_listener: Any
) -> None:
    channel_dir = tmp_path / "channel"
    channel_dir.mkdir()
    inside = channel_dir / "inside.txt"
    inside.write_text("in\n", encoding="utf-8")
    outside = tmp_path / "outside.txt"
    outside.write_text("out\n", encoding="utf-8")
    event_file = channel_dir / "events.jsonl"
    write_events_jsonl(
        event_file,
        [
            make_event(
                EventType.TEST_LOG, {"data_name": "in", "data_type": "TEXT", "path": str(inside)}
            ),
            make_event(
                EventType.TEST_LOG,
                {"data_name": "out", "data_type": "TEXT", "path": str(outside)},
            ),
        ],
    )

    result = SubprocessResultsParser(recording_listener).parse_file(event_file)

    assert (result.replayed, result.skipped) == (1, 1)
    assert not inside.exists()
    assert outside.exists()


def test_test_log_without_any_log_dir_is_skipped(tmp_path: Path, recording_listener: Any) -> None:
    log_path = tmp_path / "child_log.txt"
    log_path.write_text("child output\n", encoding="utf-8")
    line = encode_event(
        make_event(
            EventType.TEST_LOG,
            {"data_name": "child_log", "data_type": "TEXT", "path": str(log_path)},
        )
    )

    result = SubprocessResultsParser(recording_listener).parse_lines([line])

    assert result.skipped == 1
    assert log_path.exists()
