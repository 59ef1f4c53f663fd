"""State store interface and the in-memory implementation."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "oidc."


@runtime_checkable
class StateStore(Protocol):
    """Async key/value store for pending request state."""

    async def set(self, key: str, value: str) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def remove(self, key: str) -> str | None: ...

    async def get_all_keys(self) -> list[str]: ...


class InMemoryStateStore:
    """State store over a plain dict.

    Keys are namespaced with ``prefix`` so several stores can share one
    backing dict; keys without the prefix are invisible to this store.
    """

    def __init__(self, prefix: str = DEFAULT_PREFIX, store: dict[str, str] | None = None) -> None:
        self._prefix = prefix
        self._store: dict[str, str] = store if store is not None else {}

    async def set(self, key: str, value: str) -> None:
        logger.debug(f"set('{key}')")
        self._store[self._prefix + key] = value

    async def get(self, key: str) -> str | None:
        logger.debug(f"get('{key}')")
        return self._store.get(self._prefix + key)

    async def remove(self, key: str) -> str | None:
        logger.debug(f"remove('{key}')")
        return self._store.pop(self._prefix + key, None)

    async def get_all_keys(self) -> list[str]:
        return [k[len(self._prefix):] for k in list(self._store) if k.startswith(self._prefix)]
