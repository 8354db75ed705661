from __future__ import annotations

import json
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path

import structlog

from sandbox_env.spec import Sandbox

logger = structlog.get_logger(__name__)


class LocalSandbox(Sandbox):
    """
    Sandbox backed by a directory on the local host.

    With `root_dir` the sandbox runs from an existing build directory and never
    deletes it. Without it, a private working directory is created on first use
    and removed by `tear_down`.
    """

    def __init__(
        self,
        root_dir: Path | None = None,
        *,
        work_dir_parent: Path | None = None,
        keep_work_dir: bool = False,
    ) -> None:
        self._root_dir = root_dir
        self._work_dir_parent = work_dir_parent
        self._keep_work_dir = keep_work_dir
        self._work_dir: Path | None = None
        self._closed = False

    @property
    def work_dir(self) -> Path | None:
        return self._work_dir

    def get_execution_root(self, args: Sequence[str]) -> Path:
        if self._closed:
            raise RuntimeError("LocalSandbox was already torn down.")
        if self._root_dir is not None:
            root = self._root_dir.resolve()
            if not root.is_dir():
                raise FileNotFoundError(f"Missing sandbox root directory: {root}")
            return root

        if self._work_dir is None:
            if self._work_dir_parent is not None:
                self._work_dir_parent.mkdir(parents=True, exist_ok=True)
            self._work_dir = Path(
                tempfile.mkdtemp(prefix="sandbox-", dir=self._work_dir_parent)
            )
            meta = {"backend": "local", "args": list(args), "work_dir": str(self._work_dir)}
            (self._work_dir / "sandbox.json").write_text(
                json.dumps(meta, indent=2, ensure_ascii=False) + "\n",
                encoding="utf-8",
            )
            logger.debug("sandbox_work_dir_created", work_dir=str(self._work_dir))
        return self._work_dir

    def tear_down(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._work_dir is None or self._keep_work_dir:
            return
        shutil.rmtree(self._work_dir, ignore_errors=True)
        logger.debug("sandbox_torn_down", work_dir=str(self._work_dir))
