from __future__ import annotations

import os
import signal
import subprocess
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from functools import partial
from pathlib import Path
from typing import IO, Protocol

import structlog

from run_util.command import CommandResult, CommandStatus

logger = structlog.get_logger(__name__)

_KILL_GRACE_ENV = "HARNESS_RUN_UTIL_KILL_GRACE_SECONDS"
_DEFAULT_KILL_GRACE_SECONDS = 5.0
_READ_CHUNK_BYTES = 64 * 1024


class OutputSink(Protocol):
    def write(self, data: bytes) -> object: ...


def _get_kill_grace_seconds() -> float:
    raw = os.environ.get(_KILL_GRACE_ENV)
    if raw is None or not raw.strip():
        return _DEFAULT_KILL_GRACE_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return _DEFAULT_KILL_GRACE_SECONDS
    return value if value > 0 else _DEFAULT_KILL_GRACE_SECONDS


class _Pump(threading.Thread):
    """Copies one pipe into a sink (or a buffer) until EOF or `detach`."""

    def __init__(self, pipe: IO[bytes], sink: OutputSink | None) -> None:
        super().__init__(daemon=True)
        self._pipe = pipe
        self._sink = sink
        self._lock = threading.Lock()
        self._detached = False
        self.buffer = bytearray()

    def run(self) -> None:
        try:
            for chunk in iter(partial(self._pipe.read, _READ_CHUNK_BYTES), b""):
                with self._lock:
                    if self._detached:
                        continue
                    if self._sink is None:
                        self.buffer.extend(chunk)
                        continue
                    self._sink.write(chunk)
                    flush = getattr(self._sink, "flush", None)
                    if callable(flush):
                        flush()
        finally:
            self._pipe.close()

    def text(self) -> str:
        return self.buffer.decode("utf-8", errors="replace")

    def detach(self) -> None:
        # After this returns the sink is never written again.
        with self._lock:
            self._detached = True


def _kill_process_tree(proc: subprocess.Popen[bytes]) -> None:
    if os.name == "nt":
        if proc.poll() is None:
            proc.kill()
        return
    # The group outlives its leader while any member is alive.
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        if proc.poll() is None:
            proc.kill()


class RunUtil:
    """
    Runs external commands under a wall-clock budget.

    Environment changes made through `set_env_variable`/`unset_env_variable`
    apply only to the commands this instance launches, never to the current
    process. Each command runs in its own process group so a timeout kills
    the whole tree, not just the direct child.
    """

    def __init__(self, *, kill_grace_seconds: float | None = None) -> None:
        self._env_overrides: dict[str, str] = {}
        self._env_unset: set[str] = set()
        self._working_dir: Path | None = None
        self._kill_grace_seconds = (
            kill_grace_seconds if kill_grace_seconds is not None else _get_kill_grace_seconds()
        )

    def set_working_dir(self, path: Path | str | None) -> None:
        self._working_dir = Path(path) if path is not None else None

    def set_env_variable(self, name: str, value: str) -> None:
        self._env_unset.discard(name)
        self._env_overrides[name] = value

    def unset_env_variable(self, name: str) -> None:
        self._env_overrides.pop(name, None)
        self._env_unset.add(name)

    def build_env(self) -> dict[str, str]:
        env = {k: v for k, v in os.environ.items() if k not in self._env_unset}
        env.update(self._env_overrides)
        return env

    @contextmanager
    def temporary_env_variable(self, name: str, value: str) -> Iterator[None]:
        """Set `name` for the commands run inside the block, then restore it."""

        previous = self._env_overrides.get(name)
        was_unset = name in self._env_unset
        self.set_env_variable(name, value)
        try:
            yield
        finally:
            if previous is not None:
                self._env_overrides[name] = previous
            else:
                self._env_overrides.pop(name, None)
            if was_unset:
                self._env_unset.add(name)

    def run_timed_cmd(
        self,
        timeout_ms: int | float,
        *argv: str,
        stdout: OutputSink | None = None,
        stderr: OutputSink | None = None,
    ) -> CommandResult:
        """
        Run `argv` and classify the outcome.

        Output is copied into `stdout`/`stderr` as it arrives. When a sink is
        omitted the stream is captured in memory and returned on the result.
        Once the command exits, whatever it left running in its process group
        is killed; no sink is written after this method returns.
        """

        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms!r}")
        if not argv:
            raise ValueError("run_timed_cmd requires a command to run")

        command = [str(a) for a in argv]
        timeout_seconds = float(timeout_ms) / 1000.0
        start = time.monotonic()
        logger.debug("run_timed_cmd", argv=command, timeout_seconds=timeout_seconds)

        popen_kwargs: dict[str, object] = {}
        if os.name == "nt":
            popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            popen_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(  # noqa: S603
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                cwd=str(self._working_dir) if self._working_dir is not None else None,
                env=self.build_env(),
                **popen_kwargs,  # type: ignore[arg-type]
            )
        except OSError as e:
            logger.warning("run_timed_cmd_spawn_failed", argv=command, error=str(e))
            return CommandResult(
                status=CommandStatus.EXCEPTION,
                argv=command,
                stderr=f"Failed to launch process: {e}",
                duration_seconds=time.monotonic() - start,
            )

        assert proc.stdout is not None
        assert proc.stderr is not None
        stdout_pump = _Pump(proc.stdout, stdout)
        stderr_pump = _Pump(proc.stderr, stderr)
        readers = [stdout_pump, stderr_pump]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning(
                "run_timed_cmd_timeout",
                argv=command,
                timeout_seconds=timeout_seconds,
                pid=proc.pid,
            )
            _kill_process_tree(proc)
            try:
                proc.wait(timeout=self._kill_grace_seconds)
            except subprocess.TimeoutExpired:
                # Keep moving and report the timeout; avoid hanging here.
                proc.kill()

        # Leftover background processes would keep the pipes open.
        _kill_process_tree(proc)
        for reader in readers:
            reader.join(timeout=self._kill_grace_seconds)
            if reader.is_alive():
                reader.detach()
                logger.warning("run_timed_cmd_output_detached", argv=command, pid=proc.pid)

        if timed_out:
            status = CommandStatus.TIMED_OUT
        elif proc.returncode == 0:
            status = CommandStatus.SUCCESS
        else:
            status = CommandStatus.FAILED

        return CommandResult(
            status=status,
            argv=command,
            exit_code=proc.returncode,
            stdout=stdout_pump.text() if stdout is None else None,
            stderr=stderr_pump.text() if stderr is None else None,
            duration_seconds=time.monotonic() - start,
        )
