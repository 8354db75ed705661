from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class BuildInfo:
    build_id: str
    test_tag: str = "stub"
    build_branch: str | None = None
    build_flavor: str | None = None


@dataclass(frozen=True)
class FolderBuildInfo(BuildInfo):
    """A build whose artifacts were unpacked into `root_dir`."""

    root_dir: Path | None = None
