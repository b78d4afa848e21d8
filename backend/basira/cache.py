"""
Process-local TTL cache for property reads.

One instance is created per app (see `basira.main`) and cleared on shutdown;
nothing here is shared across processes. Invalidation is coarse: a write to a
property drops every detail variant for that id plus the whole stats cache,
and (by default) the whole list cache.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from threading import Lock
from typing import Any

from basira.config import property_detail_cache_ttl, property_list_cache_ttl, property_stats_cache_ttl

logger = logging.getLogger(__name__)


class CacheKind(str, Enum):
    LIST = "list"
    DETAIL = "detail"
    STATS = "stats"


def default_ttls() -> dict[CacheKind, float]:
    return {
        CacheKind.LIST: float(property_list_cache_ttl()),
        CacheKind.DETAIL: float(property_detail_cache_ttl()),
        CacheKind.STATS: float(property_stats_cache_ttl()),
    }


class PropertyCache:
    def __init__(
        self,
        *,
        ttls: Mapping[CacheKind, float] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttls = dict(default_ttls())
        if ttls:
            self._ttls.update(ttls)
        self._clock = clock
        self._lock = Lock()
        self._stores: dict[CacheKind, dict[str, tuple[float, Any]]] = {kind: {} for kind in CacheKind}

    def ttl(self, kind: CacheKind) -> float:
        return self._ttls[kind]

    def get(self, kind: CacheKind, key: str, *, bypass: bool = False) -> Any | None:
        """
        Cached payload, or None when missing or expired. `bypass=True` forces a
        miss for this caller without touching the stored entry.
        """
        if bypass:
            return None
        now = self._clock()
        with self._lock:
            store = self._stores[kind]
            entry = store.get(key)
            if entry is None:
                return None
            stored_at, payload = entry
            if now - stored_at >= self._ttls[kind]:
                store.pop(key, None)
                return None
            return payload

    def set(self, kind: CacheKind, key: str, payload: Any) -> None:
        now = self._clock()
        with self._lock:
            self._stores[kind][key] = (now, payload)

    def invalidate(self, property_id: int | str, *, clear_list: bool = True) -> None:
        pid = str(property_id)
        prefix = f"{pid}:"
        with self._lock:
            details = self._stores[CacheKind.DETAIL]
            for key in [k for k in details if k == pid or k.startswith(prefix)]:
                del details[key]
            self._stores[CacheKind.STATS].clear()
            if clear_list:
                self._stores[CacheKind.LIST].clear()
        logger.debug("Invalidated property cache for id=%s (clear_list=%s)", pid, clear_list)

    def clear(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.clear()

    def size(self, kind: CacheKind | None = None) -> int:
        with self._lock:
            if kind is not None:
                return len(self._stores[kind])
            return sum(len(s) for s in self._stores.values())

    @staticmethod
    def list_key(params: Mapping[str, Any], role: str | None) -> str:
        clean = {k: v for k, v in params.items() if v is not None and k != "_t"}
        return json.dumps({"params": clean, "role": role or "anonymous"}, sort_keys=True, default=str)

    @staticmethod
    def detail_key(property_id: int | str, variant: str) -> str:
        return f"{property_id}:{variant}"
