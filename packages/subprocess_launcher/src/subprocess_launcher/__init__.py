from subprocess_launcher.build_info import BuildInfo, FolderBuildInfo
from subprocess_launcher.launcher import (
    DEFAULT_ENTRY_POINT,
    LauncherOptions,
    SubprocessTestLauncher,
    launch,
)

__all__ = [
    "DEFAULT_ENTRY_POINT",
    "BuildInfo",
    "FolderBuildInfo",
    "LauncherOptions",
    "SubprocessTestLauncher",
    "launch",
]
