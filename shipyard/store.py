"""JSON state store over a key-value backend.

Key layout:
  /shipyard/services/{name}            service record
  /shipyard/stacks/{name}/state        stack state
  /shipyard/stacks/{name}/ledger/{ts}  ledger entry
  /shipyard/containers/{id}            container record
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from shipyard.kv import MemoryKV, WatchStream

PREFIX_SERVICES = "/shipyard/services/"
PREFIX_STACKS = "/shipyard/stacks/"
PREFIX_CONTAINERS = "/shipyard/containers/"
PREFIX_LEDGER = "/shipyard/ledger/"


class StoreError(Exception):
    """Raised when the backend fails or stored data cannot be decoded."""


@contextmanager
def _client_errors(message: str) -> Iterator[None]:
    try:
        yield
    except StoreError:
        raise
    except Exception as exc:
        raise StoreError(f"{message}: {exc}") from exc


class Store:
    """JSON-valued store on top of a key-value client such as MemoryKV."""

    def __init__(self, client: Optional[Any] = None) -> None:
        self._client = client if client is not None else MemoryKV()

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying client."""
        self._client.close()

    def put(self, key: str, value: Any, ttl: float = 0) -> None:
        """Serialise value as JSON and write it to key; ttl > 0 sets an expiry."""
        payload = value.to_dict() if hasattr(value, "to_dict") else value
        try:
            data = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"store: marshal failed for key {key!r}: {exc}") from exc

        lease = 0
        if ttl > 0:
            with _client_errors("store: lease grant failed"):
                lease = self._client.grant(ttl)
        with _client_errors(f"store: put failed for key {key!r}"):
            self._client.put(key, data, lease)

    def get(self, key: str) -> Any:
        """Return the decoded JSON value at key, or None if it does not exist."""
        with _client_errors(f"store: get failed for key {key!r}"):
            entry = self._client.get(key)
        if entry is None:
            return None
        try:
            return json.loads(entry.value)
        except ValueError as exc:
            raise StoreError(f"store: unmarshal failed for key {key!r}: {exc}") from exc

    def list(self, prefix: str) -> list[tuple[str, bytes]]:
        """Return (key, raw JSON bytes) for every key under prefix, in key order."""
        with _client_errors(f"store: list failed for prefix {prefix!r}"):
            entries = self._client.get_prefix(prefix)
        return [(entry.key, entry.value) for entry in entries]

    def delete(self, key: str) -> None:
        """Delete key; a missing key is not an error."""
        with _client_errors(f"store: delete failed for key {key!r}"):
            self._client.delete(key)

    def delete_prefix(self, prefix: str) -> None:
        """Delete every key under prefix."""
        with _client_errors(f"store: delete prefix failed for {prefix!r}"):
            self._client.delete_prefix(prefix)

    def watch(self, prefix: str) -> WatchStream:
        """Return a stream of changes under prefix."""
        with _client_errors(f"store: watch failed for prefix {prefix!r}"):
            return self._client.watch(prefix)

    def raw_put(self, key: str, value: str) -> None:
        """Write a string value to key as is, with no expiry."""
        with _client_errors(f"store: put failed for key {key!r}"):
            self._client.put(key, value)

    def raw_get(self, key: str) -> Any:
        """Return the decoded JSON value at key, or None if it does not exist."""
        return self.get(key)

    def raw_list(self, prefix: str) -> list[tuple[str, bytes]]:
        """Return (key, raw bytes) for every key under prefix."""
        return self.list(prefix)

    def raw_delete(self, key: str) -> None:
        """Delete a single key."""
        self.delete(key)


def service_key(name: str) -> str:
    return PREFIX_SERVICES + name


def stack_state_key(name: str) -> str:
    return PREFIX_STACKS + name + "/state"


def ledger_key(name: str, timestamp_ns: int) -> str:
    return f"{PREFIX_STACKS}{name}/ledger/{timestamp_ns:020d}"


def container_key(container_id: str) -> str:
    return PREFIX_CONTAINERS + container_id


def strip_prefix(key: str, prefix: str) -> str:
    """Remove prefix from key if present."""
    return key.removeprefix(prefix)