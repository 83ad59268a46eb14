"""In-memory keyed store with per-entry expiry.

Entries whose ``expires_at`` has passed are treated as absent by every read,
whether or not :meth:`ExpiryStore.sweep` has physically removed them yet.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class ExpiryStore(Generic[K, V]):
    """Lock-guarded dict of ``key → (value, expires_at)``.

    ``expires_at=None`` means the entry never expires. There is no capacity
    bound; expired entries linger until read or swept.
    """

    def __init__(self, clock: Clock = utc_now, name: str = "store") -> None:
        self._clock = clock
        self._name = name
        self._entries: dict[K, _Entry[V]] = {}
        self._lock = threading.Lock()

    def put(self, key: K, value: V, expires_at: datetime | None = None) -> None:
        """Insert or replace the entry for *key*."""
        with self._lock:
            self._entries[key] = _Entry(value, expires_at)

    def get(self, key: K) -> V | None:
        """Return the live value for *key*, or ``None`` if absent or expired."""
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    def update(
        self, key: K, mutator: Callable[[V], V], include_expired: bool = False
    ) -> V | None:
        """Atomically replace the value for *key* with ``mutator(value)``.

        Returns the new value, or ``None`` when there is no live entry (the
        mutator is then not called). With ``include_expired=True`` an expired
        entry that has not been swept yet is handed to the mutator too, so the
        caller can tell "expired" from "never existed". If the mutator raises,
        the entry is left untouched and the exception propagates.
        """
        with self._lock:
            if include_expired:
                entry = self._entries.get(key)
            else:
                entry = self._live_entry(key)
            if entry is None:
                return None
            entry.value = mutator(entry.value)
            return entry.value

    def delete(self, key: K) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def delete_if(self, key: K, predicate: Callable[[V], bool]) -> bool:
        """Delete the entry for *key* only if ``predicate(value)`` holds."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or not predicate(entry.value):
                return False
            del self._entries[key]
            return True

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %d expired entries from %s", len(expired), self._name)
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return self._live_entry(key) is not None  # type: ignore[arg-type]

    # ── Private helpers ──────────────────────────────────

    def _live_entry(self, key: K) -> _Entry[V] | None:
        """Caller must hold the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry


class ExpirySweeper:
    """Background task that periodically sweeps a set of stores."""

    def __init__(self, stores: Iterable[ExpiryStore], interval_seconds: float = 60.0) -> None:
        self._stores = list(stores)
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="expiry-sweeper")
            logger.info("Expiry sweeper started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    def sweep_once(self) -> int:
        return sum(store.sweep() for store in self._stores)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")
