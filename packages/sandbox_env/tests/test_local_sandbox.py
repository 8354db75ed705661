from __future__ import annotations

import json
from pathlib import Path

import pytest

from sandbox_env import LocalSandbox, Sandbox


def test_local_sandbox_uses_given_root_and_keeps_it(tmp_path: Path) -> None:
    root = tmp_path / "build"
    root.mkdir()
    sandbox = LocalSandbox(root)

    assert sandbox.get_execution_root(["cfg"]) == root.resolve()
    sandbox.tear_down()

    assert root.is_dir()


def test_local_sandbox_missing_root_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        LocalSandbox(tmp_path / "missing").get_execution_root([])


def test_local_sandbox_work_dir_lifecycle(tmp_path: Path) -> None:
    with LocalSandbox(work_dir_parent=tmp_path / "work") as sandbox:
        root = sandbox.get_execution_root(["my-config", "--flag"])
        assert root.is_dir()
        assert sandbox.get_execution_root([]) == root
        meta = json.loads((root / "sandbox.json").read_text(encoding="utf-8"))
        assert meta["args"] == ["my-config", "--flag"]

    assert not root.exists()
    sandbox.tear_down()
    with pytest.raises(RuntimeError):
        sandbox.get_execution_root([])


def test_base_sandbox_is_abstract() -> None:
    with pytest.raises(NotImplementedError):
        Sandbox().get_execution_root([])
