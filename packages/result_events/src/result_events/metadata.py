from __future__ import annotations

import json
import threading
from io import BytesIO
from typing import Any

import structlog

from result_events.listener import (
    InputStreamSource,
    LogDataType,
    LogFile,
    LogSaver,
    LogSaverListener,
)

logger = structlog.get_logger(__name__)

_METADATA_SCHEMA_VERSION = 1


class FileMetadataCollector(LogSaverListener):
    """Collects the name and type of every saved log file and saves them as one artifact."""

    def __init__(self, *, disable: bool = False) -> None:
        self._disable = disable
        self._log_saver: LogSaver | None = None
        self._lock = threading.Lock()
        self._log_files: list[dict[str, str]] = []

    def get_metadata_contents(self) -> dict[str, Any]:
        with self._lock:
            return {
                "schema_version": _METADATA_SCHEMA_VERSION,
                "log_files": [dict(entry) for entry in self._log_files],
            }

    def test_log_saved(
        self,
        data_name: str,
        data_type: LogDataType,
        source: InputStreamSource,
        log_file: LogFile,
    ) -> None:
        if self._disable:
            return
        with self._lock:
            self._log_files.append({"name": data_name, "type": data_type.value})

    def invocation_ended(self, elapsed_ms: int) -> None:
        if self._disable:
            return
        if self._log_saver is None:
            logger.error("metadata_not_saved", reason="no log saver attached")
            return
        payload = json.dumps(self.get_metadata_contents(), indent=2, ensure_ascii=False)
        try:
            self._log_saver.save_log_data_raw(
                "metadata", "json", BytesIO(payload.encode("utf-8"))
            )
        except OSError as e:
            logger.error("metadata_not_saved", reason=str(e))

    def set_log_saver(self, log_saver: LogSaver) -> None:
        self._log_saver = log_saver
