"""Registered cluster nodes, kept alive by heartbeats on a TTL lease."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from shipyard.services import _format_time, _parse_time, _strings, _text
from shipyard.stacks import _integer, _number, _object
from shipyard.store import Store, StoreError

log = logging.getLogger(__name__)

PREFIX_NODES = "/shipyard/nodes/"
NODE_LEASE_TTL = 30  # seconds; a node must heartbeat within this window


class NodeStatus(str, Enum):
    """Health of a node."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


@dataclass
class NodeResources:
    """Schedulable resource capacity."""

    cpu_millis: int = 0  # 1000 = 1 core
    memory_mb: int = 0


def _labels(value: Any) -> dict[str, str]:
    if value is None:
        return {}
    value = _object(value, "labels")
    if not all(isinstance(v, str) for v in value.values()):
        raise TypeError("labels must map strings to strings")
    return dict(value)


def _resources(value: Any) -> NodeResources:
    if value is None:
        return NodeResources()
    value = _object(value, "allocatable")
    return NodeResources(
        cpu_millis=_integer(value, "cpuMillis"),
        memory_mb=_integer(value, "memoryMB"),
    )


def _status(value: Any) -> Optional[NodeStatus]:
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise TypeError("field 'status' must be a string")
    return NodeStatus(value)


@dataclass
class NodeInfo:
    """Runtime details about a registered node."""

    id: str
    name: str = ""
    hostname: str = ""
    region: str = ""
    provider: str = ""  # docker, k8s, nomad, etc.
    cpu_cores: int = 0
    mem_total_mb: int = 0
    disk_total_gb: int = 0
    cpu_percent: float = 0.0
    mem_used_mb: int = 0
    mem_percent: float = 0.0
    status: Optional[NodeStatus] = None
    last_seen_at: Optional[datetime] = None
    registered_at: Optional[datetime] = None
    labels: dict[str, str] = field(default_factory=dict)
    taints: list[str] = field(default_factory=list)
    allocatable: NodeResources = field(default_factory=NodeResources)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "hostname": self.hostname,
            "region": self.region,
            "provider": self.provider,
            "cpuCores": self.cpu_cores,
            "memTotalMB": self.mem_total_mb,
            "diskTotalGB": self.disk_total_gb,
            "cpuPercent": self.cpu_percent,
            "memUsedMB": self.mem_used_mb,
            "memPercent": self.mem_percent,
            "status": "" if self.status is None else NodeStatus(self.status).value,
            "lastSeenAt": _format_time(self.last_seen_at),
            "registeredAt": _format_time(self.registered_at),
        }
        if self.labels:
            data["labels"] = dict(self.labels)
        if self.taints:
            data["taints"] = list(self.taints)
        data["allocatable"] = {
            "cpuMillis": self.allocatable.cpu_millis,
            "memoryMB": self.allocatable.memory_mb,
        }
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "NodeInfo":
        data = _object(data, "node record")
        return cls(
            id=_text(data, "id"),
            name=_text(data, "name"),
            hostname=_text(data, "hostname"),
            region=_text(data, "region"),
            provider=_text(data, "provider"),
            cpu_cores=_integer(data, "cpuCores"),
            mem_total_mb=_integer(data, "memTotalMB"),
            disk_total_gb=_integer(data, "diskTotalGB"),
            cpu_percent=_number(data, "cpuPercent"),
            mem_used_mb=_integer(data, "memUsedMB"),
            mem_percent=_number(data, "memPercent"),
            status=_status(data.get("status")),
            last_seen_at=_parse_time(data.get("lastSeenAt")),
            registered_at=_parse_time(data.get("registeredAt")),
            labels=_labels(data.get("labels")),
            taints=_strings(data, "taints"),
            allocatable=_resources(data.get("allocatable")),
        )


class NodeStore:
    """Reads and writes node records under /shipyard/nodes/ with a TTL lease."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def register(self, node: NodeInfo) -> None:
        """Write the node record on a fresh lease; call again before it expires."""
        now = datetime.now(timezone.utc)
        if node.registered_at is None:
            node.registered_at = now
        node.last_seen_at = now
        if node.status is None:
            node.status = NodeStatus.HEALTHY
        self._store.put(PREFIX_NODES + node.id, node.to_dict(), ttl=NODE_LEASE_TTL)

    def get(self, node_id: str) -> Optional[NodeInfo]:
        """Return the node with this id, or None if it is not registered."""
        key = PREFIX_NODES + node_id
        data = self._store.get(key)
        if data is None:
            return None
        try:
            return NodeInfo.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"store: unmarshal failed for key {key!r}: {exc}") from exc

    def list(self) -> list[NodeInfo]:
        """Return every live node, skipping malformed records."""
        nodes = []
        for key, raw in self._store.list(PREFIX_NODES):
            try:
                nodes.append(NodeInfo.from_dict(json.loads(raw)))
            except (TypeError, ValueError) as exc:
                log.warning("store: skipping malformed node at %r: %s", key, exc)
        return nodes

    def update_metrics(
        self,
        node_id: str,
        cpu_percent: float,
        mem_used_mb: int,
        mem_percent: float,
    ) -> None:
        """Update a node's live metrics and renew its lease."""
        node = self.get(node_id)
        if node is None:
            raise StoreError(f"store: node {node_id!r} not found")
        node.cpu_percent = cpu_percent
        node.mem_used_mb = mem_used_mb
        node.mem_percent = mem_percent
        self.register(node)