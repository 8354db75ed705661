from harness_config._version import __version__
from harness_config.configuration import SANDBOX_TYPE_NAME, Configuration, DumpCmd, TestCommand
from harness_config.errors import ConfigurationError
from harness_config.factory import ConfigurationFactory
from harness_config.global_config import (
    GLOBAL_CONFIG_VARIABLE,
    GlobalConfiguration,
    load_global_config,
)
from harness_config.keystore import KEYSTORE_PREFIX, KeyStoreClient
from harness_config.log_setup import configure_logging, resolve_log_level
from harness_config.sandbox_factory import SandboxConfigurationFactory
from harness_config.sandbox_util import dump_config_for_version

__all__ = [
    "__version__",
    "GLOBAL_CONFIG_VARIABLE",
    "KEYSTORE_PREFIX",
    "SANDBOX_TYPE_NAME",
    "Configuration",
    "ConfigurationError",
    "ConfigurationFactory",
    "DumpCmd",
    "GlobalConfiguration",
    "KeyStoreClient",
    "SandboxConfigurationFactory",
    "TestCommand",
    "configure_logging",
    "dump_config_for_version",
    "load_global_config",
    "resolve_log_level",
]
