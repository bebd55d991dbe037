"""Starts and stops noVNC sidecar containers next to a service container."""

from __future__ import annotations

import socket
from typing import Any, Iterable, Optional

from shipyard.vnc.session import Instance

# websockify-only mode is used when VNC_SERVER is set (no Xvfb/x11vnc in the sidecar)
NOVNC_IMAGE = "theasp/novnc:latest"
NOVNC_PORT = 8080
DEFAULT_VNC_PORT = 5900


class LauncherError(Exception):
    """Raised when a noVNC sidecar cannot be started."""


class Launcher:
    """Manages noVNC sidecar containers through a Docker-style client.

    The client must provide:
      list_images(reference) -> list of images matching the reference
      pull_image(image) -> iterable (or closable stream) of progress output
      create_container(name, config, host_config, networking_config) -> container id
      start_container(container_id)
      stop_container(name)
      remove_container(name, force)
      inspect_container(name) -> dict in Docker Engine API shape
    Configuration dicts use the Docker Engine API field names.
    """

    def __init__(self, docker: Any) -> None:
        self._docker = docker

    def launch(
        self,
        service_name: str,
        mode: str,
        network_name: str = "",
        main_container_name: str = "",
        vnc_port: int = 0,
    ) -> Instance:
        """Start a sidecar proxying the VNC server inside main_container_name."""
        if not vnc_port:
            vnc_port = DEFAULT_VNC_PORT

        try:
            self._ensure_image()
        except Exception as exc:
            raise LauncherError(f"vnc: could not pull noVNC image: {exc}") from exc

        try:
            host_port = get_free_port()
        except OSError as exc:
            raise LauncherError(f"vnc: no free port available: {exc}") from exc

        container_name = sidecar_name(service_name, mode)
        self._remove_stale(container_name)

        port_key = f"{NOVNC_PORT}/tcp"
        host_config = {
            "PortBindings": {
                port_key: [{"HostIp": "0.0.0.0", "HostPort": str(host_port)}],
            },
        }

        # Container names resolve through Docker DNS only on user-defined
        # networks; on the default bridge the main container's IP is needed.
        vnc_host = main_container_name
        if not network_name:
            try:
                vnc_host = self._container_ip(main_container_name) or vnc_host
            except Exception:
                pass

        config = {
            "Image": NOVNC_IMAGE,
            "ExposedPorts": {port_key: {}},
            "Env": [
                f"VNC_SERVER={vnc_host}:{vnc_port}",
                "DISPLAY_WIDTH=1280",
                "DISPLAY_HEIGHT=720",
            ],
        }

        networking_config: Optional[dict[str, Any]] = None
        if network_name:
            networking_config = {"EndpointsConfig": {network_name: {}}}

        try:
            container_id = self._docker.create_container(
                name=container_name,
                config=config,
                host_config=host_config,
                networking_config=networking_config,
            )
        except Exception as exc:
            raise LauncherError(f"vnc: failed to create noVNC container: {exc}") from exc

        try:
            self._docker.start_container(container_id)
        except Exception as exc:
            raise LauncherError(f"vnc: failed to start noVNC container: {exc}") from exc

        return Instance(
            service_name=service_name,
            container_id=container_id,
            container_name=container_name,
            host_port=host_port,
            url=f"http://localhost:{host_port}",
        )

    def stop(self, service_name: str, mode: str) -> None:
        """Stop and remove the sidecar for a service; missing sidecars are ignored."""
        self._remove_stale(sidecar_name(service_name, mode))

    # ── helpers ────────────────────────────────────────────────────────────

    def _ensure_image(self) -> None:
        if self._docker.list_images(NOVNC_IMAGE):
            return
        output = self._docker.pull_image(NOVNC_IMAGE)
        try:
            _drain(output)
        finally:
            close = getattr(output, "close", None)
            if callable(close):
                close()

    def _remove_stale(self, name: str) -> None:
        for action in (
            lambda: self._docker.stop_container(name),
            lambda: self._docker.remove_container(name, force=True),
        ):
            try:
                action()
            except Exception:
                pass

    def _container_ip(self, container_name: str) -> str:
        info = self._docker.inspect_container(container_name)
        networks = (info.get("NetworkSettings") or {}).get("Networks") or {}
        bridge = networks.get("bridge") or {}
        if bridge.get("IPAddress"):
            return bridge["IPAddress"]
        for settings in networks.values():
            if settings and settings.get("IPAddress"):
                return settings["IPAddress"]
        raise LauncherError(f"no IP found for container {container_name!r}")


def _drain(output: Any) -> None:
    if output is None:
        return
    read = getattr(output, "read", None)
    if callable(read):
        read()
        return
    if isinstance(output, Iterable):
        for _ in output:
            pass


def sidecar_name(service_name: str, mode: str) -> str:
    """Return the container name of the noVNC sidecar for a service and mode."""
    name = service_name.lower().replace(" ", "_").replace("-", "_")
    return f"shipyard_{name}_{mode}_vnc"


def get_free_port() -> int:
    """Return a TCP port that is free on this host right now."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("", 0))
        return sock.getsockname()[1]