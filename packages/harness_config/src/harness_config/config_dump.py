from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from pathlib import Path

import structlog

from harness_config._version import __version__
from harness_config.configuration import DumpCmd
from harness_config.errors import ConfigurationError
from harness_config.factory import ConfigurationFactory
from harness_config.global_config import load_global_config
from harness_config.log_setup import configure_logging

logger = structlog.get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m harness_config.config_dump",
        description="Resolve a configuration and write it to a YAML file.",
    )
    parser.add_argument("command", choices=[c.value for c in DumpCmd])
    parser.add_argument("output", type=Path)
    parser.add_argument("config_args", nargs=argparse.REMAINDER)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    ns = build_parser().parse_args(argv)
    try:
        configure_logging(load_global_config().log_level)
        config = ConfigurationFactory().create_configuration_from_args(ns.config_args)
        config.dump(ns.output, DumpCmd(ns.command), harness_version=__version__)
    except ConfigurationError as e:
        print(f"Failed to dump configuration: {e}", file=sys.stderr)
        return 1
    logger.debug("config_dumped", output=str(ns.output), command=ns.command)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
