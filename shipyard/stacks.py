"""Stack lifecycle state, container records and the version ledger."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from shipyard.kv import WatchStream
from shipyard.services import _format_time, _parse_time, _text
from shipyard.store import (
    PREFIX_STACKS,
    Store,
    StoreError,
    ledger_key,
    stack_state_key,
)

log = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class StackLifecycle(str, Enum):
    """Lifecycle state of a deployed stack."""

    PENDING = "pending"
    DEPLOYING = "deploying"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DOWN = "down"  # containers removed, volumes and record kept
    RESTARTING = "restarting"
    FAILED = "failed"
    ROLLING_BACK = "rolling-back"
    DESTROYED = "destroyed"

    def is_terminal(self) -> bool:
        """True for states where no further reconciliation should occur."""
        return self is StackLifecycle.DESTROYED

    def is_pauseable(self) -> bool:
        """True for states where down/stop make sense."""
        return self is StackLifecycle.RUNNING


# ── decoding helpers ──────────────────────────────────────────────────────


def _object(data: Any, what: str) -> dict:
    if not isinstance(data, dict):
        raise TypeError(f"{what} must be a JSON object")
    return data


def _integer(data: dict, key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"field {key!r} must be an integer")
    return value


def _number(data: dict, key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"field {key!r} must be a number")
    return float(value)


def _unix_nanos(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000


def _lifecycle(value: Any) -> StackLifecycle:
    if value in (None, ""):
        return StackLifecycle.PENDING
    if not isinstance(value, str):
        raise TypeError("field 'state' must be a string")
    return StackLifecycle(value)


# ── records ───────────────────────────────────────────────────────────────


@dataclass
class IDERecord:
    """A running code-server sidecar."""

    container_id: str = ""
    container_name: str = ""
    host_port: int = 0
    direct_url: str = ""


@dataclass
class VNCRecord:
    """A running noVNC sidecar."""

    container_id: str = ""
    container_name: str = ""
    host_port: int = 0
    url: str = ""


@dataclass
class ContainerRecord:
    """Runtime details of a single container instance."""

    container_id: str = ""
    container_name: str = ""
    service_name: str = ""
    mode: str = ""
    status: str = ""  # running, exited, etc.
    image: str = ""
    ports: dict[str, int] = field(default_factory=dict)
    ide: Optional[IDERecord] = None
    vnc: Optional[VNCRecord] = None
    created_at: Optional[datetime] = None


def _ide_to_dict(ide: IDERecord) -> dict[str, Any]:
    return {
        "containerID": ide.container_id,
        "containerName": ide.container_name,
        "hostPort": ide.host_port,
        "directURL": ide.direct_url,
    }


def _ide_from_dict(data: Any) -> IDERecord:
    data = _object(data, "ide record")
    return IDERecord(
        container_id=_text(data, "containerID"),
        container_name=_text(data, "containerName"),
        host_port=_integer(data, "hostPort"),
        direct_url=_text(data, "directURL"),
    )


def _vnc_to_dict(vnc: VNCRecord) -> dict[str, Any]:
    return {
        "containerID": vnc.container_id,
        "containerName": vnc.container_name,
        "hostPort": vnc.host_port,
        "url": vnc.url,
    }


def _vnc_from_dict(data: Any) -> VNCRecord:
    data = _object(data, "vnc record")
    return VNCRecord(
        container_id=_text(data, "containerID"),
        container_name=_text(data, "containerName"),
        host_port=_integer(data, "hostPort"),
        url=_text(data, "url"),
    )


def _ports_from_dict(value: Any) -> dict[str, int]:
    if value is None:
        return {}
    value = _object(value, "ports")
    ports = {}
    for name, port in value.items():
        if isinstance(port, bool) or not isinstance(port, int):
            raise TypeError(f"port {name!r} must be an integer")
        ports[name] = port
    return ports


def _container_to_dict(record: ContainerRecord) -> dict[str, Any]:
    data: dict[str, Any] = {
        "containerID": record.container_id,
        "containerName": record.container_name,
        "serviceName": record.service_name,
        "mode": record.mode,
        "status": record.status,
        "image": record.image,
        "ports": dict(record.ports),
    }
    if record.ide is not None:
        data["ide"] = _ide_to_dict(record.ide)
    if record.vnc is not None:
        data["vnc"] = _vnc_to_dict(record.vnc)
    data["createdAt"] = _format_time(record.created_at)
    return data


def _container_from_dict(data: Any) -> ContainerRecord:
    data = _object(data, "container record")
    ide = data.get("ide")
    vnc = data.get("vnc")
    return ContainerRecord(
        container_id=_text(data, "containerID"),
        container_name=_text(data, "containerName"),
        service_name=_text(data, "serviceName"),
        mode=_text(data, "mode"),
        status=_text(data, "status"),
        image=_text(data, "image"),
        ports=_ports_from_dict(data.get("ports")),
        ide=None if ide is None else _ide_from_dict(ide),
        vnc=None if vnc is None else _vnc_from_dict(vnc),
        created_at=_parse_time(data.get("createdAt")),
    )


def _containers_from_list(value: Any) -> list[ContainerRecord]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError("field 'containers' must be a list")
    return [_container_from_dict(item) for item in value]


@dataclass
class StackState:
    """The full lifecycle state of a deployed stack."""

    name: str
    service_name: str = ""
    platform: str = ""  # docker, compose, kubernetes, etc.
    mode: str = ""
    stack_name: str = ""
    node: str = ""
    state: StackLifecycle = StackLifecycle.PENDING
    state_at: Optional[datetime] = None
    retry_count: int = 0
    fail_reason: str = ""
    last_operation: str = ""
    containers: list[ContainerRecord] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "serviceName": self.service_name,
            "platform": self.platform,
            "mode": self.mode,
            "stackName": self.stack_name,
        }
        if self.node:
            data["node"] = self.node
        data["state"] = StackLifecycle(self.state).value
        data["stateAt"] = _format_time(self.state_at)
        data["retryCount"] = self.retry_count
        if self.fail_reason:
            data["failReason"] = self.fail_reason
        if self.last_operation:
            data["lastOperation"] = self.last_operation
        data["containers"] = [_container_to_dict(c) for c in self.containers]
        data["createdAt"] = _format_time(self.created_at)
        data["updatedAt"] = _format_time(self.updated_at)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "StackState":
        data = _object(data, "stack state")
        return cls(
            name=_text(data, "name"),
            service_name=_text(data, "serviceName"),
            platform=_text(data, "platform"),
            mode=_text(data, "mode"),
            stack_name=_text(data, "stackName"),
            node=_text(data, "node"),
            state=_lifecycle(data.get("state")),
            state_at=_parse_time(data.get("stateAt")),
            retry_count=_integer(data, "retryCount"),
            fail_reason=_text(data, "failReason"),
            last_operation=_text(data, "lastOperation"),
            containers=_containers_from_list(data.get("containers")),
            created_at=_parse_time(data.get("createdAt")),
            updated_at=_parse_time(data.get("updatedAt")),
        )


@dataclass
class LedgerEntry:
    """A snapshot of a stack state at a point in time, used for rollback."""

    name: str
    version: str = ""  # Unix nanoseconds as a string
    state: Optional[StackState] = None
    containers: list[ContainerRecord] = field(default_factory=list)
    recorded_at: Optional[datetime] = None
    operation: str = ""  # deploy, scale, restart, etc.
    operator: str = ""  # "user" or "reconciler"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "state": None if self.state is None else self.state.to_dict(),
            "containers": [_container_to_dict(c) for c in self.containers],
            "recordedAt": _format_time(self.recorded_at),
            "operation": self.operation,
            "operator": self.operator,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "LedgerEntry":
        data = _object(data, "ledger entry")
        state = data.get("state")
        return cls(
            name=_text(data, "name"),
            version=_text(data, "version"),
            state=None if state is None else StackState.from_dict(state),
            containers=_containers_from_list(data.get("containers")),
            recorded_at=_parse_time(data.get("recordedAt")),
            operation=_text(data, "operation"),
            operator=_text(data, "operator"),
        )


# ── persistence ───────────────────────────────────────────────────────────


def _ledger_prefix(stack_name: str) -> str:
    return f"{PREFIX_STACKS}{stack_name}/ledger/"


class StackStore:
    """Reads and writes stack states and ledger entries under /shipyard/stacks/."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def put_state(self, state: StackState) -> None:
        """Write a stack state, stamping its update and creation times."""
        now = datetime.now(timezone.utc)
        state.updated_at = now
        if state.created_at is None:
            state.created_at = now
        self._store.put(stack_state_key(state.name), state.to_dict())

    def get_state(self, name: str) -> Optional[StackState]:
        """Return the state of the named stack, or None if there is none."""
        key = stack_state_key(name)
        data = self._store.get(key)
        if data is None:
            return None
        try:
            return StackState.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"store: unmarshal failed for key {key!r}: {exc}") from exc

    def list_states(self) -> list[StackState]:
        """Return every stack state, skipping ledger keys and malformed records."""
        states = []
        for key, raw in self._store.list(PREFIX_STACKS):
            if not has_state_suffix(key):
                continue
            try:
                states.append(StackState.from_dict(json.loads(raw)))
            except (TypeError, ValueError) as exc:
                log.warning("store: skipping malformed stack state at %r: %s", key, exc)
        return states

    def transition_state(
        self,
        name: str,
        new_state: Union[StackLifecycle, str],
        reason: str = "",
    ) -> None:
        """Move a stack to a new lifecycle state, recording the reason if given."""
        target = StackLifecycle(new_state)
        state = self.get_state(name)
        if state is None:
            raise StoreError(f"store: stack {name!r} not found")
        old = state.state
        state.state = target
        state.state_at = datetime.now(timezone.utc)
        if reason:
            state.fail_reason = reason
        self.put_state(state)
        log.info("store: stack %r: %s → %s", name, old.value, target.value)

    def delete_state(self, name: str) -> None:
        """Remove a stack's state and all of its ledger entries."""
        self._store.delete_prefix(PREFIX_STACKS + name + "/")

    def write_ledger_entry(self, entry: LedgerEntry) -> None:
        """Append a version entry for a stack, setting its version from its time."""
        if entry.recorded_at is None:
            entry.recorded_at = datetime.now(timezone.utc)
        nanos = _unix_nanos(entry.recorded_at)
        entry.version = str(nanos)
        self._store.put(ledger_key(entry.name, nanos), entry.to_dict())

    def _ledger(self, stack_name: str) -> list[LedgerEntry]:
        entries = []
        for _key, raw in self._store.list(_ledger_prefix(stack_name)):
            try:
                entries.append(LedgerEntry.from_dict(json.loads(raw)))
            except (TypeError, ValueError):
                continue
        return entries

    def list_ledger_entries(self, stack_name: str) -> list[LedgerEntry]:
        """Return all version entries for a stack, newest first."""
        return self._ledger(stack_name)[::-1]

    def get_ledger_entry(self, stack_name: str, version: str) -> Optional[LedgerEntry]:
        """Return the entry with the given version, or None."""
        found = None
        for entry in self._ledger(stack_name):
            if entry.version == version:
                found = entry
        return found

    def watch(self) -> WatchStream:
        """Return a stream of changes to any stack key."""
        return self._store.watch(PREFIX_STACKS)


def has_state_suffix(key: str) -> bool:
    """True if key names a stack state rather than a ledger entry."""
    return len(key) > 6 and key.endswith("/state")