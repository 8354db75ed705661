from __future__ import annotations

import os
import sys
import tempfile
from collections.abc import Sequence
from pathlib import Path

import structlog
from run_util import RunUtil

from harness_config.configuration import DumpCmd
from harness_config.errors import ConfigurationError

logger = structlog.get_logger(__name__)

DUMP_TIMEOUT_ENV = "HARNESS_CONFIG_DUMP_TIMEOUT_SECONDS"
_DEFAULT_DUMP_TIMEOUT_SECONDS = 120.0
CONFIG_DUMP_MODULE = "harness_config.config_dump"


def _get_dump_timeout_seconds() -> float:
    raw = os.environ.get(DUMP_TIMEOUT_ENV)
    if raw is None or not raw.strip():
        return _DEFAULT_DUMP_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return _DEFAULT_DUMP_TIMEOUT_SECONDS
    return value if value > 0 else _DEFAULT_DUMP_TIMEOUT_SECONDS


def dump_config_for_version(
    root_dir: Path,
    run_util: RunUtil,
    args: Sequence[str],
    dump_cmd: DumpCmd,
    *,
    interpreter: str | None = None,
) -> Path:
    """
    Resolve `args` inside the build at `root_dir` and dump the result to a file.

    The dumper runs out of process with `root_dir` first on `PYTHONPATH`, so the
    configuration is resolved by the harness version installed in the sandbox.
    The caller owns the returned file. On failure the file is removed before
    `ConfigurationError` is raised.
    """

    fd, raw_path = tempfile.mkstemp(prefix="config-dump_", suffix=".yaml")
    os.close(fd)
    dump_path = Path(raw_path)

    python_path = [str(root_dir)]
    existing = os.environ.get("PYTHONPATH")
    if existing:
        python_path.append(existing)

    argv = [
        interpreter or sys.executable,
        "-m",
        CONFIG_DUMP_MODULE,
        dump_cmd.value,
        str(dump_path),
        *[str(a) for a in args],
    ]
    timeout_seconds = _get_dump_timeout_seconds()
    with run_util.temporary_env_variable("PYTHONPATH", os.pathsep.join(python_path)):
        result = run_util.run_timed_cmd(timeout_seconds * 1000.0, *argv)
    if not result.succeeded:
        dump_path.unlink(missing_ok=True)
        logger.warning(
            "config_dump_failed",
            status=result.status.value,
            exit_code=result.exit_code,
            root_dir=str(root_dir),
        )
        raise ConfigurationError(
            f"Error when dumping config. stderr: {result.stderr}",
            code="config_dump_failed",
            details={"status": result.status.value, "exit_code": result.exit_code},
        )
    return dump_path
