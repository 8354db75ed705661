from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Self


class Sandbox:
    """
    Isolated environment a configuration is re-executed in.

    `get_execution_root` returns the directory holding the harness build the
    child runs from; it may do real work (fetching, unpacking) the first time.
    `tear_down` releases everything the sandbox allocated and must be safe to
    call more than once.
    """

    def get_execution_root(self, args: Sequence[str]) -> Path:
        raise NotImplementedError

    def tear_down(self) -> None:
        raise NotImplementedError

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.tear_down()
