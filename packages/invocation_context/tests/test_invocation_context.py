from __future__ import annotations

import threading

import pytest

from invocation_context import IllegalStateError, InvocationContext, MultiMap, UniqueMultiMap


class _FakeDevice:
    def __init__(self, serial_number: str) -> None:
        self.serial_number = serial_number


def test_get_device_name_reverse_lookup() -> None:
    context = InvocationContext()
    device1 = _FakeDevice("serial-1")
    device2 = _FakeDevice("serial-2")

    assert context.get_device_name(device1) is None

    context.add_allocated_device("test1", device1)
    assert context.get_device_name(device1) == "test1"
    assert context.get_device_name(device2) is None


def test_add_allocated_device_last_writer_wins() -> None:
    context = InvocationContext()
    device1 = _FakeDevice("serial-1")
    device2 = _FakeDevice("serial-2")

    context.add_allocated_device("dut", device1)
    context.add_allocated_device("dut", device2)

    assert context.get_device("dut") is device2
    assert context.get_device_name(device1) is None
    assert context.get_num_devices() == 1
    assert context.get_serials() == ["serial-2"]


def test_get_attributes_returns_independent_copy() -> None:
    context = InvocationContext()
    context.add_invocation_attribute("TEST_KEY", "TEST_VALUE")
    assert context.get_attributes().get("TEST_KEY") == ["TEST_VALUE"]

    attributes = context.get_attributes()
    attributes.remove("TEST_KEY")
    attributes.put("OTHER", "x")

    assert context.get_attributes().get("TEST_KEY") == ["TEST_VALUE"]
    assert "OTHER" not in context.get_attributes()


def test_attribute_values_keep_insertion_order_per_key() -> None:
    context = InvocationContext()
    context.add_invocation_attribute("branch", "main")
    context.add_invocation_attributes({"branch": ["release"], "build_id": ["123"]})

    attributes = context.get_attributes()
    assert attributes.get("branch") == ["main", "release"]
    assert attributes.keys() == ["branch", "build_id"]


def test_locked_context_rejects_attributes() -> None:
    context = InvocationContext()
    context.add_invocation_attribute("before", "lock")
    context.lock_attributes()
    context.lock_attributes()

    with pytest.raises(IllegalStateError):
        context.add_invocation_attribute("test", "Test")
    with pytest.raises(IllegalStateError):
        context.add_invocation_attributes(UniqueMultiMap())

    assert context.is_locked is True
    assert context.get_attributes().to_dict() == {"before": ["lock"]}


def test_locked_context_still_accepts_device_bindings() -> None:
    context = InvocationContext()
    context.lock_attributes()
    device = _FakeDevice("serial-9")

    context.add_allocated_device("late", device)

    assert context.get_device_name(device) == "late"


def test_build_info_lookup_by_name_or_device() -> None:
    context = InvocationContext()
    device = _FakeDevice("serial-1")
    build_info = object()
    context.add_allocated_device("dut", device)
    context.add_device_build_info("dut", build_info)

    assert context.get_build_info("dut") is build_info
    assert context.get_build_info(device) is build_info
    assert context.get_build_info(_FakeDevice("other")) is None
    assert context.get_build_infos() == [build_info]


def test_concurrent_writers_fail_cleanly_after_lock() -> None:
    context = InvocationContext()
    errors: list[BaseException] = []
    written: list[str] = []
    barrier = threading.Barrier(9)

    def _writer(idx: int) -> None:
        barrier.wait()
        try:
            context.add_invocation_attribute("worker", str(idx))
            written.append(str(idx))
        except IllegalStateError as exc:
            errors.append(exc)

    threads = [threading.Thread(target=_writer, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    barrier.wait()
    context.lock_attributes()
    for thread in threads:
        thread.join()

    assert len(written) + len(errors) == 8
    assert sorted(context.get_attributes().get("worker")) == sorted(written)


def test_test_tag_writes_wait_for_the_context_lock() -> None:
    context = InvocationContext()
    writer = threading.Thread(target=setattr, args=(context, "test_tag", "nightly"))

    with context._lock:
        writer.start()
        writer.join(timeout=0.2)
        assert writer.is_alive()
        assert context._test_tag != "nightly"
    writer.join(timeout=5)

    assert not writer.is_alive()
    assert context.test_tag == "nightly"


def test_unique_multimap_drops_duplicate_values() -> None:
    mm: UniqueMultiMap[str, str] = UniqueMultiMap()
    mm.put("k", "v")
    mm.put("k", "v")
    mm.put("k", "w")

    assert mm.get("k") == ["v", "w"]
    assert mm == MultiMap({"k": ["v", "w"]})
