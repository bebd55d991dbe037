"""In-memory key-value backend with leases and prefix watches."""

from __future__ import annotations

import itertools
import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional

_END_OF_STREAM = object()


class EventType(Enum):
    """Kind of change reported by a watch."""

    PUT = "PUT"
    DELETE = "DELETE"


@dataclass(frozen=True)
class KeyValue:
    """A stored key with its value, lease and modification revision."""

    key: str
    value: bytes
    lease: int = 0
    mod_revision: int = 0


@dataclass(frozen=True)
class WatchEvent:
    """A single change observed under a watched prefix."""

    type: EventType
    kv: KeyValue


class WatchStream:
    """A stream of watch events for one prefix; iterate until cancelled."""

    def __init__(
        self,
        prefix: str,
        on_cancel: Optional[Callable[["WatchStream"], None]] = None,
    ) -> None:
        self.prefix = prefix
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._on_cancel = on_cancel
        self._cancelled = threading.Event()
        self._finished = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _deliver(self, event: WatchEvent) -> None:
        if not self._cancelled.is_set():
            self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[WatchEvent]:
        """Return the next event, or None on timeout or once the stream has ended."""
        if self._finished:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _END_OF_STREAM:
            self._finished = True
            return None
        return item  # type: ignore[return-value]

    def cancel(self) -> None:
        """Stop the stream; events already queued are still delivered."""
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        self._queue.put(_END_OF_STREAM)
        if self._on_cancel is not None:
            self._on_cancel(self)

    def __iter__(self) -> Iterator[WatchEvent]:
        while (event := self.get()) is not None:
            yield event


class MemoryKV:
    """Thread-safe key-value store with TTL leases and prefix watches."""

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._lock = threading.RLock()
        self._data: dict[str, KeyValue] = {}
        self._leases: dict[int, float] = {}
        self._lease_ids = itertools.count(1)
        self._revision = 0
        self._watchers: list[WatchStream] = []
        self._closed = False

    # ── internals ──────────────────────────────────────────────────────────

    def _check_open(self) -> None:
        if self._closed:
            raise ConnectionError("kv: client is closed")

    def _notify(self, event: WatchEvent) -> None:
        for stream in list(self._watchers):
            if event.kv.key.startswith(stream.prefix):
                stream._deliver(event)

    def _remove(self, key: str) -> None:
        self._data.pop(key)
        self._revision += 1
        self._notify(
            WatchEvent(EventType.DELETE, KeyValue(key, b"", 0, self._revision))
        )

    def _expire(self) -> None:
        now = self._clock()
        expired = {lease for lease, deadline in self._leases.items() if deadline <= now}
        if not expired:
            return
        for lease in expired:
            del self._leases[lease]
        for key in sorted(k for k, kv in self._data.items() if kv.lease in expired):
            self._remove(key)

    def _unregister(self, stream: WatchStream) -> None:
        with self._lock:
            if stream in self._watchers:
                self._watchers.remove(stream)

    # ── public API ─────────────────────────────────────────────────────────

    def grant(self, ttl: float) -> int:
        """Create a lease that expires after ttl seconds and return its id."""
        if ttl <= 0:
            raise ValueError("kv: lease TTL must be positive")
        with self._lock:
            self._check_open()
            self._expire()
            lease = next(self._lease_ids)
            self._leases[lease] = self._clock() + ttl
            return lease

    def put(self, key: str, value: "str | bytes", lease: int = 0) -> KeyValue:
        """Store value at key, optionally bound to a lease."""
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        with self._lock:
            self._check_open()
            self._expire()
            if lease and lease not in self._leases:
                raise LookupError(f"kv: requested lease {lease} not found")
            self._revision += 1
            kv = KeyValue(key, data, lease, self._revision)
            self._data[key] = kv
            self._notify(WatchEvent(EventType.PUT, kv))
            return kv

    def get(self, key: str) -> Optional[KeyValue]:
        """Return the entry for key, or None if absent."""
        with self._lock:
            self._check_open()
            self._expire()
            return self._data.get(key)

    def get_prefix(self, prefix: str) -> list[KeyValue]:
        """Return all entries whose key starts with prefix, sorted by key."""
        with self._lock:
            self._check_open()
            self._expire()
            return [self._data[k] for k in sorted(self._data) if k.startswith(prefix)]

    def delete(self, key: str) -> int:
        """Delete key; return the number of keys removed."""
        with self._lock:
            self._check_open()
            self._expire()
            if key not in self._data:
                return 0
            self._remove(key)
            return 1

    def delete_prefix(self, prefix: str) -> int:
        """Delete every key under prefix; return how many were removed."""
        with self._lock:
            self._check_open()
            self._expire()
            keys = sorted(k for k in self._data if k.startswith(prefix))
            for key in keys:
                self._remove(key)
            return len(keys)

    def watch(self, prefix: str = "") -> WatchStream:
        """Open a stream of changes to keys under prefix."""
        with self._lock:
            self._check_open()
            stream = WatchStream(prefix, on_cancel=self._unregister)
            self._watchers.append(stream)
            return stream

    def close(self) -> None:
        """Close the store and end every open watch stream."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            for stream in list(self._watchers):
                stream.cancel()
            self._watchers.clear()