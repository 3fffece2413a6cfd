"""Session cache for execution results.

SessionCache – process-lifetime in-memory store keyed by a request
**fingerprint**.  No TTL, no eviction, no size bound; entries are replaced on
write and dropped only by ``clear()``.
"""
from __future__ import annotations

import copy
import dataclasses
import hashlib
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from core.logging import logger

from ..introspect import identity
from ..schema import Shape
from ..serialize import stable_stringify
from ..types import ExecutionResult

__all__ = [
    "CacheEntry",
    "SessionCache",
    "build_fingerprint",
    "get_session_cache",
    "clear_session_cache",
]


def build_fingerprint(
    task: str,
    context: Any,
    shape: Shape,
    temperature: float,
    max_tokens: Optional[int] = None,
    provider_options: Optional[Mapping[str, Any]] = None,
) -> str:
    """Deterministic cache key for the semantically relevant request fields."""
    parts = [
        task.strip(),
        stable_stringify(context),
        identity(shape),
        repr(float(temperature)),
        "" if max_tokens is None else str(int(max_tokens)),
        stable_stringify(dict(provider_options or {})),
    ]
    return hashlib.sha256("::".join(parts).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    result: ExecutionResult
    stored_at: float


class SessionCache:
    """Thread-safe in-memory fingerprint → result cache.

    Two concurrent identical requests may both miss and both call the
    provider; the last ``set`` wins.
    """

    def __init__(self) -> None:
        self._store: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    def get(self, fingerprint: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._store.get(fingerprint)
        if entry is None:
            return None
        hit = dataclasses.replace(
            entry.result,
            data=copy.deepcopy(entry.result.data),
            tokens=0,
            from_cache=True,
        )
        return CacheEntry(result=hit, stored_at=entry.stored_at)

    def set(self, fingerprint: str, result: ExecutionResult) -> None:
        stored = dataclasses.replace(result, data=copy.deepcopy(result.data))
        with self._lock:
            self._store[fingerprint] = CacheEntry(result=stored, stored_at=time.time())
        logger.debug(f"Session cache stored {fingerprint[:12]}")

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def close(self) -> None:
        """Teardown hook; drops every entry."""
        self.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._store


# Process-wide cache instance
_session_cache = SessionCache()


def get_session_cache() -> SessionCache:
    """Get the process-wide session cache instance."""
    return _session_cache


def clear_session_cache() -> None:
    """Empty the process-wide session cache (test isolation, forced refresh)."""
    _session_cache.clear()
