"""State store, reconciler, event bus, service templates and noVNC sidecars for self-hosted deployments."""

__version__ = "0.1.0"