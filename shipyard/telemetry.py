"""Event bus for lifecycle events and container metrics over a JetStream-style client."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from shipyard.services import _format_time, _parse_time, _text
from shipyard.stacks import _number, _object, _unix_nanos

log = logging.getLogger(__name__)

SUBJECT_DEPLOY = "shipyard.events.deploy"
SUBJECT_STOP = "shipyard.events.stop"
SUBJECT_START = "shipyard.events.start"
SUBJECT_RESTART = "shipyard.events.restart"
SUBJECT_SCALE = "shipyard.events.scale"
SUBJECT_DESTROY = "shipyard.events.destroy"
SUBJECT_DOWN = "shipyard.events.down"
SUBJECT_ROLLBACK = "shipyard.events.rollback"
SUBJECT_METRICS = "shipyard.metrics.containers"

STREAM_EVENTS = "SHIPYARD_EVENTS"
STREAM_METRICS = "SHIPYARD_METRICS"

_SUBJECTS = {
    "deploy": SUBJECT_DEPLOY,
    "stop": SUBJECT_STOP,
    "start": SUBJECT_START,
    "restart": SUBJECT_RESTART,
    "scale": SUBJECT_SCALE,
    "destroy": SUBJECT_DESTROY,
    "down": SUBJECT_DOWN,
    "rollback": SUBJECT_ROLLBACK,
}


class TelemetryError(Exception):
    """Raised when the bus cannot be set up or a consumer cannot be created."""


def _encode(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class Event:
    """A lifecycle event."""

    type: str = ""  # deploy, stop, start, etc.
    service_name: str = ""
    stack_name: str = ""
    container_id: str = ""
    mode: str = ""
    status: str = ""  # success, failed
    error: str = ""
    operator: str = ""  # user, reconciler, autoscaler
    id: str = ""
    at: Optional[datetime] = None
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": self.type, "serviceName": self.service_name}
        if self.stack_name:
            data["stackName"] = self.stack_name
        if self.container_id:
            data["containerID"] = self.container_id
        if self.mode:
            data["mode"] = self.mode
        data["status"] = self.status
        if self.error:
            data["error"] = self.error
        data["operator"] = self.operator
        data["at"] = _format_time(self.at)
        if self.meta:
            data["meta"] = dict(self.meta)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Event":
        data = _object(data, "event")
        meta = data.get("meta")
        return cls(
            id=_text(data, "id"),
            type=_text(data, "type"),
            service_name=_text(data, "serviceName"),
            stack_name=_text(data, "stackName"),
            container_id=_text(data, "containerID"),
            mode=_text(data, "mode"),
            status=_text(data, "status"),
            error=_text(data, "error"),
            operator=_text(data, "operator"),
            at=_parse_time(data.get("at")),
            meta={} if meta is None else dict(_object(meta, "meta")),
        )


@dataclass
class MetricSample:
    """A container resource sample."""

    container_id: str = ""
    container_name: str = ""
    service_name: str = ""
    cpu_percent: float = 0.0
    mem_usage_mb: float = 0.0
    mem_percent: float = 0.0
    at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "containerID": self.container_id,
            "containerName": self.container_name,
            "serviceName": self.service_name,
            "cpuPercent": self.cpu_percent,
            "memUsageMB": self.mem_usage_mb,
            "memPercent": self.mem_percent,
            "at": _format_time(self.at),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "MetricSample":
        data = _object(data, "metric sample")
        return cls(
            container_id=_text(data, "containerID"),
            container_name=_text(data, "containerName"),
            service_name=_text(data, "serviceName"),
            cpu_percent=_number(data, "cpuPercent"),
            mem_usage_mb=_number(data, "memUsageMB"),
            mem_percent=_number(data, "memPercent"),
            at=_parse_time(data.get("at")),
        )


@dataclass(frozen=True)
class StreamConfig:
    """Configuration of a persistent stream."""

    name: str
    subjects: tuple[str, ...]
    max_age: timedelta
    retention: str = "limits"
    storage: str = "file"


class Bus:
    """Publishes and consumes events through a JetStream-style client.

    The client must provide create_or_update_stream(config),
    publish(subject, data) and create_or_update_consumer(stream, filter_subject=...,
    ack_policy=...) returning an object with consume(handler). Messages handed to
    the handler carry ``data`` bytes and ``ack()``/``nak()`` methods.
    """

    def __init__(self, jetstream: Any) -> None:
        self._js = jetstream
        self.ensure_streams()

    def ensure_streams(self) -> None:
        """Create the events and metrics streams if they do not exist."""
        streams = (
            ("events", StreamConfig(STREAM_EVENTS, ("shipyard.events.*",), timedelta(hours=24))),
            ("metrics", StreamConfig(STREAM_METRICS, ("shipyard.metrics.*",), timedelta(hours=4))),
        )
        for label, config in streams:
            try:
                self._js.create_or_update_stream(config)
            except Exception as exc:
                raise TelemetryError(
                    f"telemetry: failed to ensure {label} stream: {exc}"
                ) from exc
        log.info("telemetry: NATS streams ready (%s, %s)", STREAM_EVENTS, STREAM_METRICS)

    def publish_event(self, event: Event) -> Event:
        """Publish a lifecycle event; return it with its time and id filled in."""
        at = event.at or datetime.now(timezone.utc)
        event_id = event.id or f"{event.type}_{_unix_nanos(at)}"
        event = replace(event, at=at, id=event_id)
        self._js.publish(subject_for_type(event.type), _encode(event.to_dict()))
        return event

    def publish_metric(self, sample: MetricSample) -> MetricSample:
        """Publish a container metric sample; return it with its time filled in."""
        sample = replace(sample, at=sample.at or datetime.now(timezone.utc))
        self._js.publish(SUBJECT_METRICS, _encode(sample.to_dict()))
        return sample

    def subscribe(self, subject: str, fn: Callable[[Event], None]) -> Any:
        """Call fn for every event on subject; malformed messages are rejected."""
        try:
            consumer = self._js.create_or_update_consumer(
                STREAM_EVENTS, filter_subject=subject, ack_policy="explicit"
            )
        except Exception as exc:
            raise TelemetryError(
                f"telemetry: failed to create consumer for {subject!r}: {exc}"
            ) from exc

        def handle(msg: Any) -> None:
            try:
                event = Event.from_dict(json.loads(msg.data))
            except (TypeError, ValueError):
                msg.nak()
                return
            fn(event)
            msg.ack()

        return consumer.consume(handle)


def subject_for_type(event_type: str) -> str:
    """Return the subject that events of this type are published on."""
    return _SUBJECTS.get(event_type, "shipyard.events." + event_type)