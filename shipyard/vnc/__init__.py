"""noVNC sidecar launching and in-memory session tracking."""