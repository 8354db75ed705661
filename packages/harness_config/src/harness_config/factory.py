from __future__ import annotations

import shlex
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog

from harness_config.configuration import Configuration, TestCommand, merge_options
from harness_config.errors import ConfigurationError
from harness_config.global_config import load_global_config, load_yaml_mapping
from harness_config.keystore import KEYSTORE_PREFIX, KeyStoreClient

logger = structlog.get_logger(__name__)

_CONFIG_SUFFIXES = (".yaml", ".yml")
_TEMPLATE_MAP_ARG = "--template:map"
_DEFAULT_TEST_TIMEOUT_SECONDS = 600.0


def _parse_overrides(args: Sequence[str]) -> tuple[dict[str, Any], dict[str, str]]:
    options: dict[str, Any] = {}
    template_map: dict[str, str] = {}
    i = 0
    while i < len(args):
        token = args[i]
        if not token.startswith("--") or token == "--":
            raise ConfigurationError(
                f"Unexpected argument {token!r}; options must look like --key [value].",
                code="unexpected_argument",
                details={"argument": token},
            )
        if token == _TEMPLATE_MAP_ARG:
            if i + 1 >= len(args):
                raise ConfigurationError(
                    f"{_TEMPLATE_MAP_ARG} requires a slot=config value.",
                    code="invalid_template_map",
                )
            slot, sep, target = args[i + 1].partition("=")
            if not sep or not slot.strip() or not target.strip():
                raise ConfigurationError(
                    f"Invalid {_TEMPLATE_MAP_ARG} value {args[i + 1]!r}; expected slot=config.",
                    code="invalid_template_map",
                )
            template_map[slot.strip()] = target.strip()
            i += 2
            continue

        key, sep, value = token[2:].partition("=")
        if not key:
            raise ConfigurationError(f"Empty option name in {token!r}.", code="unexpected_argument")
        if sep:
            options[key] = value
            i += 1
        elif i + 1 < len(args) and not args[i + 1].startswith("--"):
            options[key] = args[i + 1]
            i += 2
        else:
            options[key] = True
            i += 1
    return options, template_map


def _parse_tests(path: Path, raw: Any) -> list[TestCommand]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigurationError(f"{path}: tests must be a list.", code="invalid_config")

    tests: list[TestCommand] = []
    for idx, item in enumerate(raw):
        where = f"{path}: tests[{idx}]"
        if not isinstance(item, dict):
            raise ConfigurationError(f"{where} must be a mapping.", code="invalid_config")
        name = item.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(
                f"{where}.name must be a non-empty string.", code="invalid_config"
            )

        command = item.get("command")
        if isinstance(command, str):
            argv = tuple(shlex.split(command))
        elif isinstance(command, list) and all(isinstance(a, str) for a in command):
            argv = tuple(command)
        else:
            raise ConfigurationError(
                f"{where}.command must be a string or a list of strings.", code="invalid_config"
            )
        if not argv:
            raise ConfigurationError(f"{where}.command is empty.", code="invalid_config")

        timeout = item.get("timeout_seconds", _DEFAULT_TEST_TIMEOUT_SECONDS)
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError(
                f"{where}.timeout_seconds must be a positive number.", code="invalid_config"
            )
        tests.append(TestCommand(name=name.strip(), command=argv, timeout_seconds=float(timeout)))
    return tests


def _parse_mapping(path: Path, raw: dict[str, Any], key: str) -> dict[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{path}: {key} must be a mapping.", code="invalid_config")
    return dict(value)


def _resolve_keystore(config: Configuration, keystore_client: KeyStoreClient) -> None:
    for key, value in list(config.options.items()):
        if not isinstance(value, str) or not value.startswith(KEYSTORE_PREFIX):
            continue
        if not keystore_client.is_available():
            raise ConfigurationError(
                f"Option {key!r} needs the keystore, but the keystore client is unavailable.",
                code="keystore_unavailable",
                details={"option": key},
            )
        secret = keystore_client.fetch_key(value[len(KEYSTORE_PREFIX) :])
        if secret is None:
            raise ConfigurationError(
                f"Keystore has no entry for option {key!r}.",
                code="keystore_missing_key",
                details={"option": key},
            )
        config.options[key] = secret


class ConfigurationFactory:
    """
    Builds `Configuration` objects from command-line style arguments.

    `args[0]` names the configuration: an existing YAML path, or a name looked
    up in the search dirs. The remaining args override options and fill
    template slots.
    """

    def __init__(self, search_dirs: Sequence[Path] | None = None) -> None:
        self._search_dirs = tuple(search_dirs) if search_dirs is not None else None

    @property
    def search_dirs(self) -> tuple[Path, ...]:
        if self._search_dirs is not None:
            return self._search_dirs
        return (*load_global_config().config_search_dirs, Path.cwd() / "configs")

    def find_config(self, name: str) -> Path:
        direct = Path(name).expanduser()
        if direct.is_file():
            return direct.resolve()

        candidates: list[Path] = []
        for base in self.search_dirs:
            if Path(name).suffix in _CONFIG_SUFFIXES:
                candidates.append(base / name)
            else:
                candidates.extend(base / f"{name}{suffix}" for suffix in _CONFIG_SUFFIXES)
        for candidate in candidates:
            if candidate.is_file():
                return candidate.resolve()
        raise ConfigurationError(
            f"Could not find configuration {name!r}.",
            code="config_not_found",
            details={"name": name, "searched": [str(c) for c in candidates]},
        )

    def create_configuration_from_args(
        self,
        args: Sequence[str],
        keystore_client: KeyStoreClient | None = None,
    ) -> Configuration:
        if not args:
            raise ConfigurationError(
                "A configuration name is required.", code="missing_config_name"
            )

        name, *rest = [str(a) for a in args]
        option_overrides, template_map = _parse_overrides(rest)

        used_slots: set[str] = set()
        config = self._load(self.find_config(name), template_map, used_slots, stack=())
        unused = sorted(set(template_map) - used_slots)
        if unused:
            raise ConfigurationError(
                f"Unused {_TEMPLATE_MAP_ARG} slots: {', '.join(unused)}.",
                code="template_unused",
                details={"slots": unused},
            )

        config.options = merge_options(config.options, option_overrides)
        # Without a client, keystore references stay as-is for a later resolution.
        if keystore_client is not None:
            _resolve_keystore(config, keystore_client)
        config.set_command_line(args)
        logger.debug(
            "configuration_loaded",
            name=config.name,
            source=str(config.source_path),
            tests=len(config.tests),
        )
        return config

    def _load(
        self,
        path: Path,
        template_map: dict[str, str],
        used_slots: set[str],
        *,
        stack: tuple[Path, ...],
    ) -> Configuration:
        raw = load_yaml_mapping(path)

        name = raw.get("name", path.stem)
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(
                f"{path}: name must be a non-empty string.", code="invalid_config"
            )
        description = raw.get("description", "")
        if not isinstance(description, str):
            raise ConfigurationError(
                f"{path}: description must be a string.", code="invalid_config"
            )
        version = raw.get("harness_version")
        if version is not None and not isinstance(version, (str, int, float)):
            raise ConfigurationError(
                f"{path}: harness_version must be a string.", code="invalid_config"
            )

        config = Configuration(
            name=name.strip(),
            description=description,
            harness_version=str(version) if version is not None else None,
            device_requirements=_parse_mapping(path, raw, "device_requirements"),
            options=_parse_mapping(path, raw, "options"),
            tests=_parse_tests(path, raw.get("tests")),
            source_path=path,
        )

        templates = _parse_mapping(path, raw, "templates")
        for slot, default in templates.items():
            chosen = template_map.get(slot, default)
            used_slots.add(slot)
            if chosen is None:
                raise ConfigurationError(
                    f"{path}: template slot {slot!r} was not filled; "
                    f"pass {_TEMPLATE_MAP_ARG} {slot}=<config>.",
                    code="template_unfilled",
                    details={"slot": slot},
                )
            if not isinstance(chosen, str):
                raise ConfigurationError(
                    f"{path}: template slot {slot!r} must name a configuration.",
                    code="invalid_config",
                )
            included_path = self.find_config(chosen)
            if included_path in stack or included_path == path:
                raise ConfigurationError(
                    f"{path}: template slot {slot!r} includes {included_path} recursively.",
                    code="template_cycle",
                )
            included = self._load(included_path, template_map, used_slots, stack=(*stack, path))
            config.tests.extend(included.tests)
            config.options = merge_options(included.options, config.options)
            config.device_requirements = merge_options(
                included.device_requirements, config.device_requirements
            )
            config.templates[slot] = chosen

        return config
