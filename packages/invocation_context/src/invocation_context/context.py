from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from invocation_context.multimap import MultiMap

_DEFAULT_TEST_TAG = "stub"


class IllegalStateError(RuntimeError):
    """Raised when a locked InvocationContext is asked to accept new attributes."""


class InvocationContext:
    """
    Shared record of the devices and attributes of one invocation.

    Devices are bound to logical names at allocation time. Attributes are an
    ordered multimap of free-form metadata (branch, build id, test tag, ...).
    `lock_attributes` is a one-way switch: afterwards attribute writes raise
    `IllegalStateError`. Device bindings stay writable after the lock.

    Every read hands back a copy taken under the context lock, so listeners
    running on other threads never observe a partially applied write.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._allocated_devices: dict[str, Any] = {}
        self._build_infos: dict[str, Any] = {}
        self._attributes: MultiMap[str, str] = MultiMap()
        self._locked = False
        self._test_tag = _DEFAULT_TEST_TAG

    # Devices

    def add_allocated_device(self, name: str, device: Any) -> None:
        with self._lock:
            self._allocated_devices[name] = device

    def get_device_name(self, device: Any) -> str | None:
        with self._lock:
            for name, bound in self._allocated_devices.items():
                if bound is device or bound == device:
                    return name
        return None

    def get_device(self, name: str) -> Any | None:
        with self._lock:
            return self._allocated_devices.get(name)

    def get_devices(self) -> list[Any]:
        with self._lock:
            return list(self._allocated_devices.values())

    def get_device_names(self) -> list[str]:
        with self._lock:
            return list(self._allocated_devices)

    def get_num_devices(self) -> int:
        with self._lock:
            return len(self._allocated_devices)

    def get_serials(self) -> list[str]:
        serials: list[str] = []
        for device in self.get_devices():
            serial = getattr(device, "serial_number", None)
            if isinstance(serial, str) and serial:
                serials.append(serial)
        return serials

    def add_device_build_info(self, name: str, build_info: Any) -> None:
        with self._lock:
            self._build_infos[name] = build_info

    def get_build_info(self, name_or_device: Any) -> Any | None:
        if not isinstance(name_or_device, str):
            name = self.get_device_name(name_or_device)
            if name is None:
                return None
        else:
            name = name_or_device
        with self._lock:
            return self._build_infos.get(name)

    def get_build_infos(self) -> list[Any]:
        with self._lock:
            return list(self._build_infos.values())

    # Attributes

    @property
    def test_tag(self) -> str:
        with self._lock:
            return self._test_tag

    @test_tag.setter
    def test_tag(self, value: str) -> None:
        with self._lock:
            self._test_tag = value

    @property
    def is_locked(self) -> bool:
        with self._lock:
            return self._locked

    def add_invocation_attribute(self, key: str, value: str) -> None:
        with self._lock:
            self._ensure_unlocked()
            self._attributes.put(key, value)

    def add_invocation_attributes(
        self, attributes: MultiMap[str, str] | Mapping[str, Iterable[str]]
    ) -> None:
        with self._lock:
            self._ensure_unlocked()
            self._attributes.put_all(attributes)

    def get_attributes(self) -> MultiMap[str, str]:
        with self._lock:
            return self._attributes.copy()

    def lock_attributes(self) -> None:
        with self._lock:
            self._locked = True

    def _ensure_unlocked(self) -> None:
        if self._locked:
            raise IllegalStateError(
                "Attempt to add invocation attribute while context is locked."
            )
