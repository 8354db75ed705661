from __future__ import annotations

from typing import Protocol

KEYSTORE_PREFIX = "USE_KEYSTORE@"


class KeyStoreClient(Protocol):
    def is_available(self) -> bool: ...

    def fetch_key(self, key: str) -> str | None: ...
