from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CommandStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    EXCEPTION = "EXCEPTION"


@dataclass(frozen=True)
class CommandResult:
    """
    Outcome of one timed command.

    `stdout`/`stderr` hold the captured text only when the caller did not hand
    in its own sinks; otherwise the output lives in those sinks and these are None.
    """

    status: CommandStatus
    argv: list[str]
    exit_code: int | None = None
    stdout: str | None = None
    stderr: str | None = None
    duration_seconds: float | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is CommandStatus.SUCCESS
