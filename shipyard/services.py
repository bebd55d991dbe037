"""Records for onboarded services and their persistence."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from shipyard.store import PREFIX_SERVICES, Store, StoreError, service_key

log = logging.getLogger(__name__)

_ZERO_TIME = "0001-01-01T00:00:00Z"
_ZERO_INSTANT = datetime(1, 1, 1, tzinfo=timezone.utc)
_FRACTION = re.compile(r"\.(\d+)")


def _format_time(value: Optional[datetime]) -> str:
    if value is None:
        return _ZERO_TIME
    value = value.astimezone(timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    return text + "Z"


def _parse_time(text: Any) -> Optional[datetime]:
    if text is None or text == _ZERO_TIME:
        return None
    if not isinstance(text, str):
        raise TypeError(f"time must be a string, not {type(text).__name__}")
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return None if parsed == _ZERO_INSTANT else parsed


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise TypeError(f"field {key!r} must be a string")
    return value


def _strings(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise TypeError(f"field {key!r} must be a list of strings")
    return list(value)


@dataclass
class ServiceRecord:
    """The canonical record for an onboarded service."""

    name: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    context_dir: str = ""
    modes: list[str] = field(default_factory=list)
    source: str = ""  # "github" | "zip" | "local"
    repo_url: str = ""
    branch: str = ""
    engine: str = ""
    onboarded_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "tags": list(self.tags),
            "contextDir": self.context_dir,
            "modes": list(self.modes),
            "source": self.source,
            "repoURL": self.repo_url,
            "branch": self.branch,
            "engine": self.engine,
            "onboardedAt": _format_time(self.onboarded_at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ServiceRecord":
        if not isinstance(data, dict):
            raise TypeError("service record must be a JSON object")
        return cls(
            name=_text(data, "name"),
            description=_text(data, "description"),
            tags=_strings(data, "tags"),
            context_dir=_text(data, "contextDir"),
            modes=_strings(data, "modes"),
            source=_text(data, "source"),
            repo_url=_text(data, "repoURL"),
            branch=_text(data, "branch"),
            engine=_text(data, "engine"),
            onboarded_at=_parse_time(data.get("onboardedAt")),
        )


class ServiceStore:
    """Reads and writes service records under /shipyard/services/."""

    def __init__(self, store: Store) -> None:
        self._store = store

    def put(self, record: ServiceRecord) -> None:
        """Write a service record, stamping its onboarding time if unset."""
        if record.onboarded_at is None:
            record.onboarded_at = datetime.now(timezone.utc)
        self._store.put(service_key(record.name), record.to_dict())

    def get(self, name: str) -> Optional[ServiceRecord]:
        """Return the record for name, or None if there is none."""
        key = service_key(name)
        data = self._store.get(key)
        if data is None:
            return None
        try:
            return ServiceRecord.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"store: unmarshal failed for key {key!r}: {exc}") from exc

    def list(self) -> list[ServiceRecord]:
        """Return every service record, skipping malformed ones."""
        records = []
        for key, raw in self._store.list(PREFIX_SERVICES):
            try:
                records.append(ServiceRecord.from_dict(json.loads(raw)))
            except (TypeError, ValueError) as exc:
                log.warning("store: skipping malformed service record at %r: %s", key, exc)
        return records

    def delete(self, name: str) -> None:
        """Remove a service record."""
        self._store.delete(service_key(name))

    def exists(self, name: str) -> bool:
        """Return True if a service with this name exists."""
        return self.get(name) is not None