from __future__ import annotations

import logging

import pytest
import structlog

from harness_config import configure_logging, resolve_log_level


def test_verbose_maps_to_debug() -> None:
    assert resolve_log_level("VERBOSE") == logging.DEBUG
    assert resolve_log_level("verbose") == logging.DEBUG
    assert resolve_log_level("warn") == logging.WARNING
    assert resolve_log_level(logging.ERROR) == logging.ERROR


def test_unknown_level_raises() -> None:
    with pytest.raises(ValueError):
        resolve_log_level("CHATTY")


def test_configure_logging_filters_below_level(capsys) -> None:
    try:
        configure_logging("WARNING")
        log = structlog.get_logger("harness_config.tests")
        log.info("hidden_event")
        log.warning("shown_event")
    finally:
        structlog.reset_defaults()

    out = capsys.readouterr().out
    assert "shown_event" in out
    assert "hidden_event" not in out
