from __future__ import annotations

import threading
from collections.abc import Sequence
from pathlib import Path

import structlog
from packaging.version import InvalidVersion, Version
from run_util import RunUtil
from sandbox_env import Sandbox

from harness_config._version import __version__
from harness_config.configuration import SANDBOX_TYPE_NAME, Configuration, DumpCmd
from harness_config.errors import ConfigurationError
from harness_config.factory import ConfigurationFactory
from harness_config.global_config import GLOBAL_CONFIG_VARIABLE
from harness_config.keystore import KeyStoreClient
from harness_config.sandbox_util import dump_config_for_version

logger = structlog.get_logger(__name__)


def _parse_version(raw: str, *, where: str) -> Version:
    try:
        return Version(raw)
    except InvalidVersion as e:
        raise ConfigurationError(
            f"Invalid harness_version {raw!r} in {where}.",
            code="invalid_harness_version",
            details={"harness_version": raw},
        ) from e


class SandboxConfigurationFactory(ConfigurationFactory):
    """
    Resolves configurations that will run inside a sandbox.

    The sandbox may hold a different harness build than the parent, so the
    configuration is dumped by that build out of process and the parent only
    loads the non-versioned result.
    """

    _instance: SandboxConfigurationFactory | None = None
    _instance_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> SandboxConfigurationFactory:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def create_configuration_from_args(
        self,
        args: Sequence[str],
        keystore_client: KeyStoreClient | None = None,
        sandbox: Sandbox | None = None,
        run_util: RunUtil | None = None,
    ) -> Configuration:
        if sandbox is None:
            return super().create_configuration_from_args(args, keystore_client)
        return self._create_sandboxed(args, sandbox, run_util or RunUtil())

    def _create_sandboxed(
        self, args: Sequence[str], sandbox: Sandbox, run_util: RunUtil
    ) -> Configuration:
        raw_args = [str(a) for a in args]
        dump_path: Path | None = None
        try:
            run_util.unset_env_variable(GLOBAL_CONFIG_VARIABLE)
            root_dir = sandbox.get_execution_root(raw_args)
            dump_path = dump_config_for_version(
                root_dir, run_util, raw_args, DumpCmd.NON_VERSIONED_CONFIG
            )
            # Credentials are resolved later, inside the sandbox.
            config = super().create_configuration_from_args([str(dump_path)], None)
            self._reconcile_version(config, dump_path)
            config.set_command_line(raw_args)
            config.set_configuration_object(SANDBOX_TYPE_NAME, sandbox)
            return config
        except Exception as e:
            logger.error(
                "sandbox_configuration_failed",
                args=raw_args,
                error=str(e),
                error_type=type(e).__name__,
                code=getattr(e, "code", None),
            )
            try:
                sandbox.tear_down()
            except Exception as teardown_error:
                # The original failure is the one reported.
                logger.error("sandbox_tear_down_failed", error=str(teardown_error))
            raise
        finally:
            if dump_path is not None:
                dump_path.unlink(missing_ok=True)

    def _reconcile_version(self, config: Configuration, dump_path: Path) -> None:
        if config.harness_version is None:
            return
        sandbox_version = _parse_version(config.harness_version, where=str(dump_path))
        local_version = _parse_version(__version__, where="the installed harness_config")
        if sandbox_version != local_version:
            logger.info(
                "sandbox_harness_version_skew",
                sandbox_version=str(sandbox_version),
                local_version=str(local_version),
                config=config.name,
            )
