"""Injected query cache shared by the opportunity list, board and form."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Any

CacheKey = tuple[Any, ...]

OPPORTUNITY_LIST_KEY: CacheKey = ("opportunities",)
BOARD_KEY: CacheKey = ("opportunities", "board")


def opportunity_key(opportunity_id: int) -> CacheKey:
    return ("opportunity", opportunity_id)


def account_key(account_id: int) -> CacheKey:
    return ("account", account_id)


@dataclass
class CacheEntry:
    value: Any
    updated_at: str
    stale: bool = False


class QueryCache:
    """Key/value store with prefix invalidation.

    Invalidation marks entries stale instead of dropping them, so views keep
    rendering the last value until the owner refetches.
    """

    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._lock = Lock()

    def get(self, key: CacheKey) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            return None if entry is None else entry.value

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, updated_at=datetime.now(timezone.utc).isoformat())

    def snapshot(self, key: CacheKey) -> Any | None:
        """Deep copy of the cached value; mutating it never touches the cache."""
        return copy.deepcopy(self.get(key))

    def invalidate(self, prefix: CacheKey) -> list[CacheKey]:
        """Mark every key starting with ``prefix`` stale and return them."""
        with self._lock:
            matched = [key for key in self._entries if key[: len(prefix)] == prefix]
            for key in matched:
                self._entries[key].stale = True
            return matched

    def is_stale(self, key: CacheKey) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is None or entry.stale

    def keys(self) -> list[CacheKey]:
        with self._lock:
            return list(self._entries)
