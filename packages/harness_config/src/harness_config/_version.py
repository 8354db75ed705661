from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as package_version


def _resolve_version() -> str:
    for distribution_name in ("sandbox-harness", "sandbox_harness"):
        try:
            return package_version(distribution_name)
        except PackageNotFoundError:
            continue
    return "0+unknown"


__version__ = _resolve_version()
