from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from harness_config.errors import ConfigurationError

GLOBAL_CONFIG_VARIABLE = "HARNESS_GLOBAL_CONFIG"


@dataclass(frozen=True)
class GlobalConfiguration:
    config_search_dirs: tuple[Path, ...] = field(default_factory=tuple)
    log_level: str = "INFO"
    source_path: Path | None = None


def load_yaml_mapping(path: Path) -> dict[str, Any]:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(f"Failed to read {path}: {e}", code="read_failed") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML in {path}: {e}", code="yaml_parse_error"
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Expected a YAML mapping in {path}, got {type(raw).__name__}.",
            code="not_a_mapping",
        )
    return raw


def load_global_config(env: Mapping[str, str] | None = None) -> GlobalConfiguration:
    """
    Load the global configuration named by `HARNESS_GLOBAL_CONFIG`.

    An unset or empty variable yields the defaults. Relative search dirs are
    resolved against the global configuration file's directory.
    """

    environ = os.environ if env is None else env
    raw_path = environ.get(GLOBAL_CONFIG_VARIABLE, "").strip()
    if not raw_path:
        return GlobalConfiguration()

    path = Path(raw_path).expanduser()
    raw = load_yaml_mapping(path)

    dirs_raw = raw.get("config_search_dirs", [])
    if not isinstance(dirs_raw, list) or not all(isinstance(d, str) for d in dirs_raw):
        raise ConfigurationError(
            f"{path}: config_search_dirs must be a list of strings.",
            code="invalid_global_config",
        )
    search_dirs = []
    for d in dirs_raw:
        p = Path(d).expanduser()
        search_dirs.append(p if p.is_absolute() else (path.parent / p).resolve())

    log_level = raw.get("log_level", "INFO")
    if not isinstance(log_level, str) or not log_level.strip():
        raise ConfigurationError(
            f"{path}: log_level must be a non-empty string.", code="invalid_global_config"
        )

    return GlobalConfiguration(
        config_search_dirs=tuple(search_dirs),
        log_level=log_level.strip().upper(),
        source_path=path,
    )
