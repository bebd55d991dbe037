import json
from datetime import datetime, timedelta, timezone

import pytest

from shipyard.telemetry import (
    Bus,
    Event,
    MetricSample,
    StreamConfig,
    TelemetryError,
    subject_for_type,
)


class FakeMessage:
    def __init__(self, data):
        self.data = data
        self.acked = False
        self.naked = False

    def ack(self):
        self.acked = True

    def nak(self):
        self.naked = True


class FakeConsumer:
    def __init__(self):
        self.handler = None

    def consume(self, handler):
        self.handler = handler
        return "subscription"


class FakeJetStream:
    def __init__(self, fail_streams=False, fail_consumer=False):
        self.streams = {}
        self.published = []
        self.consumers = []
        self.fail_streams = fail_streams
        self.fail_consumer = fail_consumer

    def create_or_update_stream(self, config):
        if self.fail_streams:
            raise OSError("unreachable")
        self.streams[config.name] = config

    def publish(self, subject, data):
        self.published.append((subject, data))

    def create_or_update_consumer(self, stream, filter_subject, ack_policy):
        if self.fail_consumer:
            raise OSError("unreachable")
        consumer = FakeConsumer()
        self.consumers.append((stream, filter_subject, ack_policy, consumer))
        return consumer


def test_bus_creates_streams():
    js = FakeJetStream()
    Bus(js)
    assert set(js.streams) == {"SHIPYARD_EVENTS", "SHIPYARD_METRICS"}
    events = js.streams["SHIPYARD_EVENTS"]
    assert events.subjects == ("shipyard.events.*",)
    assert events.max_age == timedelta(hours=24)
    metrics = js.streams["SHIPYARD_METRICS"]
    assert metrics.subjects == ("shipyard.metrics.*",)
    assert metrics.max_age == timedelta(hours=4)


def test_stream_failure_raises():
    with pytest.raises(TelemetryError):
        Bus(FakeJetStream(fail_streams=True))


def test_ensure_streams_is_idempotent():
    js = FakeJetStream()
    bus = Bus(js)
    bus.ensure_streams()
    assert sorted(js.streams) == ["SHIPYARD_EVENTS", "SHIPYARD_METRICS"]
    assert isinstance(js.streams["SHIPYARD_EVENTS"], StreamConfig)


@pytest.mark.parametrize(
    "event_type, subject",
    [
        ("deploy", "shipyard.events.deploy"),
        ("stop", "shipyard.events.stop"),
        ("rollback", "shipyard.events.rollback"),
        ("down", "shipyard.events.down"),
    ],
)
def test_subject_for_known_types(event_type, subject):
    assert subject_for_type(event_type) == subject


def test_subject_for_unknown_type():
    assert subject_for_type("custom") == "shipyard.events.custom"


def test_publish_event_fills_id_and_time():
    js = FakeJetStream()
    bus = Bus(js)
    sent = bus.publish_event(Event(type="deploy", service_name="web", status="success"))
    assert sent.at is not None
    prefix, _, digits = sent.id.partition("_")
    assert prefix == "deploy"
    assert digits.isdigit()
    subject, data = js.published[0]
    assert subject == "shipyard.events.deploy"
    decoded = Event.from_dict(json.loads(data))
    assert decoded == sent


def test_publish_event_keeps_given_id_and_does_not_mutate():
    js = FakeJetStream()
    bus = Bus(js)
    original = Event(type="scale", id="fixed-id")
    sent = bus.publish_event(original)
    assert sent.id == "fixed-id"
    assert original.at is None


def test_event_omits_empty_optional_fields():
    data = Event(type="stop", service_name="web").to_dict()
    for key in ("stackName", "containerID", "mode", "error", "meta"):
        assert key not in data
    assert data["serviceName"] == "web"


def test_event_round_trip():
    event = Event(
        type="destroy",
        service_name="api",
        stack_name="prod",
        container_id="c1",
        mode="dev",
        status="failed",
        error="boom",
        operator="user",
        id="destroy_1",
        at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        meta={"replicas": 3},
    )
    assert Event.from_dict(json.loads(json.dumps(event.to_dict()))) == event


def test_publish_metric():
    js = FakeJetStream()
    bus = Bus(js)
    sample = MetricSample(container_id="c1", service_name="web", cpu_percent=12.5)
    sent = bus.publish_metric(sample)
    subject, data = js.published[0]
    assert subject == "shipyard.metrics.containers"
    decoded = json.loads(data)
    assert decoded["containerID"] == "c1"
    assert decoded["cpuPercent"] == 12.5
    assert MetricSample.from_dict(decoded) == sent


def test_subscribe_delivers_and_acks():
    js = FakeJetStream()
    bus = Bus(js)
    received = []
    result = bus.subscribe("shipyard.events.deploy", received.append)
    assert result == "subscription"
    stream, filter_subject, ack_policy, consumer = js.consumers[0]
    assert stream == "SHIPYARD_EVENTS"
    assert filter_subject == "shipyard.events.deploy"
    assert ack_policy == "explicit"

    msg = FakeMessage(json.dumps(Event(type="deploy", service_name="web").to_dict()).encode())
    consumer.handler(msg)
    assert [e.service_name for e in received] == ["web"]
    assert msg.acked and not msg.naked


def test_subscribe_naks_malformed_messages():
    js = FakeJetStream()
    bus = Bus(js)
    received = []
    bus.subscribe("shipyard.events.stop", received.append)
    consumer = js.consumers[0][3]
    msg = FakeMessage(b"not json")
    consumer.handler(msg)
    assert received == []
    assert msg.naked and not msg.acked


def test_subscribe_consumer_failure_raises():
    bus = Bus(FakeJetStream(fail_consumer=True))
    with pytest.raises(TelemetryError):
        bus.subscribe("shipyard.events.stop", lambda event: None)