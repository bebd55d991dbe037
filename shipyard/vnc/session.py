"""In-process registry of running noVNC sidecars."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class Instance:
    """Runtime details of a running noVNC sidecar container."""

    service_name: str
    container_id: str
    container_name: str
    host_port: int
    url: str  # direct localhost address to open in a browser

    def to_dict(self) -> dict[str, Any]:
        return {
            "serviceName": self.service_name,
            "containerID": self.container_id,
            "containerName": self.container_name,
            "hostPort": self.host_port,
            "url": self.url,
        }


class Registry:
    """Thread-safe map of active VNC sessions keyed by service name."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sessions: dict[str, Instance] = {}

    def put(self, service_name: str, instance: Instance) -> None:
        """Store or replace the instance for a service."""
        with self._lock:
            self._sessions[service_name] = instance

    def get(self, service_name: str) -> Optional[Instance]:
        """Return the instance for a service, or None."""
        with self._lock:
            return self._sessions.get(service_name)

    def delete(self, service_name: str) -> None:
        """Forget the instance for a service; missing names are ignored."""
        with self._lock:
            self._sessions.pop(service_name, None)

    def list(self) -> list[Instance]:
        """Return all active instances."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, service_name: object) -> bool:
        with self._lock:
            return service_name in self._sessions