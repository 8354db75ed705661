from __future__ import annotations

import os
import shutil
import sys
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from functools import partial
from pathlib import Path
from typing import IO

import structlog
from harness_config import GLOBAL_CONFIG_VARIABLE
from invocation_context import InvocationContext
from result_events import (
    FileInputStreamSource,
    LogDataType,
    SubprocessResultsParser,
    TestInvocationListener,
)
from run_util import RunUtil

from subprocess_launcher.build_info import BuildInfo

logger = structlog.get_logger(__name__)

DEFAULT_ENTRY_POINT = "subprocess_launcher.command_runner"
REMOTE_DEBUG_PORT = 10088


@dataclass(frozen=True)
class LauncherOptions:
    max_run_time_min: float = 20
    remote_debug: bool = False
    config_name: str | None = None
    sub_branch: str | None = None
    sub_build_flavor: str | None = None
    sub_build_id: str | None = None
    use_virtual_device: bool = False
    sub_apk_paths: tuple[str, ...] = field(default_factory=tuple)
    interpreter: str = sys.executable
    entry_point: str = DEFAULT_ENTRY_POINT

    def __post_init__(self) -> None:
        if self.max_run_time_min <= 0:
            raise ValueError(f"max_run_time_min must be positive, got {self.max_run_time_min!r}")


def _create_temp_file(prefix: str, directory: Path) -> Path:
    fd, raw_path = tempfile.mkstemp(prefix=prefix, suffix=".log", dir=directory)
    os.close(fd)
    return Path(raw_path)


def _read_text(path: Path | None) -> str:
    if path is None:
        return ""
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return ""


def _close_quietly(sink: IO[bytes] | None) -> None:
    if sink is None:
        return
    try:
        sink.close()
    except OSError as e:
        logger.warning("subprocess_sink_close_failed", error=str(e))


def _log_and_clean_file(path: Path | None, listener: TestInvocationListener) -> None:
    if path is None:
        return
    source = FileInputStreamSource(path)
    try:
        listener.test_log(path.name, LogDataType.TEXT, source)
    finally:
        source.cancel()
        path.unlink(missing_ok=True)


@dataclass
class _RunArtifacts:
    """Files of one child run. All of them live in a private run directory."""

    run_dir: Path | None = None
    stdout_file: Path | None = None
    stderr_file: Path | None = None
    event_file: Path | None = None
    stdout: IO[bytes] | None = None
    stderr: IO[bytes] | None = None

    def create(self) -> None:
        self.run_dir = Path(tempfile.mkdtemp(prefix="subprocess_run_"))
        self.stdout_file = _create_temp_file("stdout_subprocess_", self.run_dir)
        self.stderr_file = _create_temp_file("stderr_subprocess_", self.run_dir)
        self.event_file = _create_temp_file("event_subprocess_", self.run_dir)
        self.stdout = self.stdout_file.open("wb")
        self.stderr = self.stderr_file.open("wb")

    def release(
        self, listener: TestInvocationListener, context: InvocationContext | None
    ) -> list[Exception]:
        """
        Hand every artifact to `listener`, then delete the run directory.

        Each step runs even when an earlier one fails. Failures are logged and
        returned in order.
        """

        steps: list[Callable[[], object]] = [
            partial(_close_quietly, self.stdout),
            partial(_close_quietly, self.stderr),
            partial(_log_and_clean_file, self.stdout_file, listener),
            partial(_log_and_clean_file, self.stderr_file, listener),
        ]
        if self.event_file is not None:
            # Log copies written by the child are only honored inside run_dir.
            event_parser = SubprocessResultsParser(listener, context=context, log_dir=self.run_dir)
            steps.append(partial(event_parser.parse_file, self.event_file))
            steps.append(partial(_log_and_clean_file, self.event_file, listener))

        errors: list[Exception] = []
        for step in steps:
            try:
                step()
            except Exception as e:
                logger.error(
                    "subprocess_artifact_release_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                errors.append(e)
        if self.run_dir is not None:
            shutil.rmtree(self.run_dir, ignore_errors=True)
        return errors


class SubprocessTestLauncher:
    """
    Runs a configuration in a separate harness process built from a folder build.

    The child writes its lifecycle events to a side-channel file which is
    replayed into the listener once the child is gone. Stdout, stderr and the
    side channel are always handed to the listener as text logs and deleted,
    whichever way the run ends. They live in a private directory per run,
    together with any log copies the child writes, and the directory is
    removed afterwards.
    """

    def __init__(
        self,
        options: LauncherOptions | None = None,
        *,
        context: InvocationContext | None = None,
        run_util_factory: Callable[[], RunUtil] = RunUtil,
    ) -> None:
        self._options = options or LauncherOptions()
        self._context = context
        self._run_util_factory = run_util_factory
        self._build_info: BuildInfo | None = None

    @property
    def options(self) -> LauncherOptions:
        return self._options

    def set_build(self, build_info: BuildInfo) -> None:
        self._build_info = build_info

    def _root_dir(self) -> Path:
        root_dir = getattr(self._build_info, "root_dir", None)
        if root_dir is None:
            raise RuntimeError("The build must be a folder build with a root directory.")
        return Path(root_dir).resolve()

    def build_command(self) -> list[str]:
        """Command line of the child, minus the side-channel flag added at launch."""

        opts = self._options
        build = self._build_info
        if build is None:
            raise RuntimeError("Build info is required to launch the tests subprocess.")
        if not opts.config_name:
            raise RuntimeError("A config name is required to launch the tests subprocess.")
        root_dir = self._root_dir()

        args = [opts.interpreter]
        if opts.remote_debug:
            args += [
                "-m",
                "debugpy",
                "--listen",
                f"localhost:{REMOTE_DEBUG_PORT}",
                "--wait-for-client",
            ]
        args += ["-m", opts.entry_point, opts.config_name]
        if not opts.use_virtual_device:
            args.append("-n")
        else:
            # A device-backed child also gets more logs.
            args += ["--log-level", "VERBOSE", "--log-level-display", "VERBOSE"]
        args += ["--test-tag", build.test_tag]
        if opts.sub_build_id is not None:
            args += ["--build-id", opts.sub_build_id]

        branch = opts.sub_branch if opts.sub_branch is not None else build.build_branch
        if branch is None:
            raise RuntimeError("Branch option is required for the sub invocation.")
        args += ["--branch", branch]

        flavor = opts.sub_build_flavor if opts.sub_build_flavor is not None else build.build_flavor
        if flavor is None:
            raise RuntimeError("Build flavor option is required for the sub invocation.")
        args += ["--build-flavor", flavor]

        for apk in opts.sub_apk_paths:
            args += ["--apk-path", f"{root_dir}{os.sep}{apk}"]
        return args

    def run(self, listener: TestInvocationListener) -> None:
        args = self.build_command()
        root_dir = self._root_dir()
        assert self._build_info is not None
        build_id = self._build_info.build_id
        config_name = self._options.config_name

        run_util = self._run_util_factory()
        # A fresh global config per child; never share the parent's file.
        run_util.unset_env_variable(GLOBAL_CONFIG_VARIABLE)
        python_path = [str(root_dir)]
        existing = os.environ.get("PYTHONPATH")
        if existing:
            python_path.append(existing)
        run_util.set_env_variable("PYTHONPATH", os.pathsep.join(python_path))

        artifacts = _RunArtifacts()
        try:
            self._run_child(run_util, args, artifacts, build_id=build_id)
        except BaseException:
            # Cleanup failures are logged; the run's own error is what propagates.
            artifacts.release(listener, self._context)
            raise
        errors = artifacts.release(listener, self._context)
        if errors:
            raise RuntimeError(
                f"Failed to hand over the results of {config_name}: {errors[0]}"
            ) from errors[0]

    def _run_child(
        self,
        run_util: RunUtil,
        args: list[str],
        artifacts: _RunArtifacts,
        *,
        build_id: str,
    ) -> None:
        config_name = self._options.config_name
        try:
            artifacts.create()
            assert artifacts.stdout is not None
            assert artifacts.stderr is not None
            argv = [*args, "--subprocess-report-file", str(artifacts.event_file)]
            timeout_ms = self._options.max_run_time_min * 60 * 1000
            result = run_util.run_timed_cmd(
                timeout_ms, *argv, stdout=artifacts.stdout, stderr=artifacts.stderr
            )
            if not result.succeeded:
                artifacts.stdout.flush()
                artifacts.stderr.flush()
        except OSError as e:
            raise RuntimeError(f"Failed to run the tests subprocess for {config_name}: {e}") from e

        if result.succeeded:
            logger.debug("subprocess_tests_succeeded", build_id=build_id, config=config_name)
            return
        logger.warning(
            "subprocess_tests_failed",
            build_id=build_id,
            status=result.status.value,
            exit_code=result.exit_code,
        )
        logger.debug(
            "subprocess_output",
            stdout=_read_text(artifacts.stdout_file),
            stderr=_read_text(artifacts.stderr_file),
        )
        raise RuntimeError(f"{config_name} Tests subprocess failed due to: {result.status.value}")


def launch(
    build_info: BuildInfo,
    config_name: str,
    listener: TestInvocationListener,
    options: LauncherOptions | None = None,
    *,
    context: InvocationContext | None = None,
) -> None:
    launcher = SubprocessTestLauncher(
        replace(options or LauncherOptions(), config_name=config_name), context=context
    )
    launcher.set_build(build_info)
    launcher.run(listener)
