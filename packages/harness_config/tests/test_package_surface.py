from __future__ import annotations

from packaging.version import Version

import harness_config


def test_package_exports_version() -> None:
    assert isinstance(harness_config.__version__, str)
    assert harness_config.__version__.strip()
    Version(harness_config.__version__)


def test_package_exports_public_names() -> None:
    for name in harness_config.__all__:
        assert hasattr(harness_config, name), name
