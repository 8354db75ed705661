from __future__ import annotations

import logging

import structlog

# The child is started with `--log-level VERBOSE`; treat it as DEBUG.
_LEVEL_ALIASES = {"VERBOSE": "DEBUG", "WARN": "WARNING"}


def resolve_log_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    name = _LEVEL_ALIASES.get(level.strip().upper(), level.strip().upper())
    value = logging.getLevelName(name)
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def configure_logging(level: str | int = "INFO") -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(resolve_log_level(level)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
