from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

SANDBOX_TYPE_NAME = "sandbox"


class DumpCmd(str, Enum):
    FULL_CONFIG = "FULL_CONFIG"
    NON_VERSIONED_CONFIG = "NON_VERSIONED_CONFIG"
    VERSIONED_CONFIG = "VERSIONED_CONFIG"


@dataclass(frozen=True)
class TestCommand:
    __test__ = False

    name: str
    command: tuple[str, ...]
    timeout_seconds: float = 600.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "command": list(self.command),
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class Configuration:
    """
    A resolved harness configuration.

    `tests` is the versioned section: it depends on the harness build the
    configuration is executed with, so a non-versioned dump leaves it out and
    the sandboxed child resolves it again from its own build.
    """

    name: str
    description: str = ""
    harness_version: str | None = None
    device_requirements: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    tests: list[TestCommand] = field(default_factory=list)
    templates: dict[str, str] = field(default_factory=dict)
    source_path: Path | None = None
    _command_line: list[str] = field(default_factory=list, repr=False)
    _configuration_objects: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def command_line(self) -> list[str]:
        return list(self._command_line)

    def set_command_line(self, args: Sequence[str]) -> None:
        self._command_line = [str(a) for a in args]

    def set_configuration_object(self, type_name: str, obj: Any) -> None:
        self._configuration_objects[type_name] = obj

    def get_configuration_object(self, type_name: str) -> Any | None:
        return self._configuration_objects.get(type_name)

    def to_dict(
        self,
        dump_cmd: DumpCmd = DumpCmd.FULL_CONFIG,
        *,
        harness_version: str | None = None,
    ) -> dict[str, Any]:
        version = self.harness_version
        if dump_cmd is DumpCmd.NON_VERSIONED_CONFIG and harness_version is not None:
            version = harness_version

        if dump_cmd is DumpCmd.VERSIONED_CONFIG:
            return {
                "name": self.name,
                "harness_version": version,
                "tests": [t.to_dict() for t in self.tests],
            }

        out: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "harness_version": version,
            "device_requirements": dict(self.device_requirements),
            "options": dict(self.options),
        }
        if dump_cmd is DumpCmd.FULL_CONFIG:
            out["tests"] = [t.to_dict() for t in self.tests]
        return out

    def dump(
        self,
        path: Path,
        dump_cmd: DumpCmd = DumpCmd.FULL_CONFIG,
        *,
        harness_version: str | None = None,
    ) -> None:
        payload = self.to_dict(dump_cmd, harness_version=harness_version)
        path.write_text(
            yaml.safe_dump(payload, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )


def merge_options(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    merged.update(overrides)
    return merged
