from __future__ import annotations

import argparse
import shlex
import sys
import time
from collections.abc import Sequence
from pathlib import Path

import structlog
from harness_config import (
    Configuration,
    ConfigurationError,
    ConfigurationFactory,
    configure_logging,
    load_global_config,
)
from invocation_context import InvocationContext
from result_events import (
    ByteArrayInputStreamSource,
    LogDataType,
    SubprocessResultsReporter,
    TestDescription,
    TestInvocationListener,
)
from run_util import RunUtil

logger = structlog.get_logger(__name__)

# Replaced by the running interpreter in test commands.
PYTHON_PLACEHOLDER = "{python}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m subprocess_launcher.command_runner",
        description="Run a harness configuration and report its results.",
    )
    parser.add_argument("config_name")
    parser.add_argument(
        "-n",
        "--no-device",
        action="store_true",
        help="Run without allocating a device.",
    )
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-level-display", default=None)
    parser.add_argument("--test-tag", default="stub")
    parser.add_argument("--build-id", default=None)
    parser.add_argument("--branch", default=None)
    parser.add_argument("--build-flavor", default=None)
    parser.add_argument("--apk-path", action="append", default=[])
    parser.add_argument(
        "--subprocess-report-file",
        type=Path,
        default=None,
        help="Append lifecycle events to this file for the parent process.",
    )
    return parser


def _build_context(ns: argparse.Namespace) -> InvocationContext:
    context = InvocationContext()
    context.test_tag = ns.test_tag
    context.add_invocation_attribute("test_tag", ns.test_tag)
    for key in ("branch", "build_flavor", "build_id"):
        value = getattr(ns, key)
        if value is not None:
            context.add_invocation_attribute(key, value)
    for apk in ns.apk_path:
        context.add_invocation_attribute("apk_path", apk)
    context.lock_attributes()
    return context


def _format_output(argv: Sequence[str], stdout: str | None, stderr: str | None) -> str:
    return (
        f"$ {shlex.join(argv)}\n"
        f"--- stdout ---\n{stdout or ''}\n"
        f"--- stderr ---\n{stderr or ''}\n"
    )


def run_configuration(
    config: Configuration,
    listener: TestInvocationListener,
    run_util: RunUtil,
) -> int:
    """Run every test command of `config`; return the number of failed tests."""

    listener.test_run_started(config.name, len(config.tests))
    run_start = time.monotonic()
    failures = 0
    for test in config.tests:
        description = TestDescription(class_name=config.name, test_name=test.name)
        listener.test_started(description)
        argv = [sys.executable if a == PYTHON_PLACEHOLDER else a for a in test.command]
        result = run_util.run_timed_cmd(test.timeout_seconds * 1000, *argv)
        listener.test_log(
            f"{test.name}-output",
            LogDataType.TEXT,
            ByteArrayInputStreamSource(
                _format_output(argv, result.stdout, result.stderr).encode("utf-8")
            ),
        )
        if not result.succeeded:
            failures += 1
            listener.test_failed(
                description,
                f"{result.status.value} (exit code {result.exit_code})\n{result.stderr or ''}",
            )
        listener.test_ended(
            description,
            {
                "status": result.status.value,
                "duration_seconds": f"{result.duration_seconds or 0.0:.3f}",
            },
        )
        logger.info("test_finished", test=str(description), status=result.status.value)

    if failures:
        listener.test_run_failed(f"{failures} of {len(config.tests)} tests failed")
    elapsed_ms = int((time.monotonic() - run_start) * 1000)
    listener.test_run_ended(elapsed_ms, {"failed": str(failures), "total": str(len(config.tests))})
    return failures


def main(argv: Sequence[str] | None = None) -> int:
    ns, config_args = build_parser().parse_known_args(argv)

    listener: TestInvocationListener
    if ns.subprocess_report_file is not None:
        listener = SubprocessResultsReporter(ns.subprocess_report_file)
    else:
        listener = TestInvocationListener()

    context = _build_context(ns)
    start = time.monotonic()
    listener.invocation_started(context)
    try:
        global_config = load_global_config()
        log_level = ns.log_level or global_config.log_level
        try:
            configure_logging(log_level)
        except ValueError as e:
            raise ConfigurationError(
                str(e), code="invalid_log_level", details={"log_level": log_level}
            ) from e
        config = ConfigurationFactory().create_configuration_from_args(
            [ns.config_name, *config_args]
        )
    except ConfigurationError as e:
        logger.error("configuration_failed", config=ns.config_name, error=str(e), code=e.code)
        listener.invocation_failed(e)
        listener.invocation_ended(int((time.monotonic() - start) * 1000))
        return 1

    failures = run_configuration(config, listener, RunUtil())
    listener.invocation_ended(int((time.monotonic() - start) * 1000))
    logger.info("invocation_finished", config=config.name, failures=failures)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
