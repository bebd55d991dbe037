from datetime import datetime, timezone

import pytest

from shipyard.kv import MemoryKV
from shipyard.services import ServiceRecord, ServiceStore
from shipyard.store import Store, StoreError, service_key


@pytest.fixture
def store():
    return Store(MemoryKV())


@pytest.fixture
def services(store):
    return ServiceStore(store)


def make_record(name="web", **overrides):
    fields = dict(
        name=name,
        description="front end",
        tags=["http", "ui"],
        context_dir="./web",
        modes=["dev", "production"],
        source="github",
        repo_url="https://git.example.com/team/web.git",
        branch="main",
        engine="docker",
    )
    fields.update(overrides)
    return ServiceRecord(**fields)


def test_put_get_round_trip(services):
    record = make_record()
    services.put(record)
    loaded = services.get("web")
    assert loaded == record


def test_put_stamps_onboarded_at(services):
    record = make_record()
    before = datetime.now(timezone.utc)
    services.put(record)
    assert record.onboarded_at is not None
    assert record.onboarded_at >= before
    assert services.get("web").onboarded_at == record.onboarded_at


def test_put_keeps_existing_onboarded_at(services):
    stamp = datetime(2023, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    services.put(make_record(onboarded_at=stamp))
    assert services.get("web").onboarded_at == stamp


def test_get_missing_returns_none(services):
    assert services.get("ghost") is None
    assert services.exists("ghost") is False


def test_exists_and_delete(services):
    services.put(make_record())
    assert services.exists("web") is True
    services.delete("web")
    assert services.exists("web") is False
    services.delete("web")
    assert services.get("web") is None


def test_list_returns_all_and_skips_malformed(services, store):
    services.put(make_record("api"))
    services.put(make_record("web"))
    store.raw_put(service_key("broken"), "{not json")
    store.raw_put(service_key("typed"), '{"name": 5}')
    names = [record.name for record in services.list()]
    assert names == ["api", "web"]


def test_get_malformed_raises(services, store):
    store.raw_put(service_key("typed"), '{"name": 5}')
    with pytest.raises(StoreError):
        services.get("typed")


def test_to_dict_uses_wire_names():
    record = make_record(onboarded_at=datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc))
    data = record.to_dict()
    assert set(data) == {
        "name", "description", "tags", "contextDir", "modes",
        "source", "repoURL", "branch", "engine", "onboardedAt",
    }
    assert data["contextDir"] == "./web"
    assert data["repoURL"] == "https://git.example.com/team/web.git"
    assert data["onboardedAt"] == "2024-05-01T10:20:30Z"


def test_zero_time_round_trip():
    record = ServiceRecord(name="bare")
    data = record.to_dict()
    assert data["onboardedAt"] == "0001-01-01T00:00:00Z"
    assert ServiceRecord.from_dict(data) == record


def test_from_dict_accepts_nanosecond_times_and_nulls():
    record = ServiceRecord.from_dict(
        {"name": "db", "tags": None, "modes": None, "onboardedAt": "2024-05-01T10:20:30.123456789Z"}
    )
    assert record.tags == []
    assert record.modes == []
    assert record.onboarded_at == datetime(2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc)


def test_from_dict_rejects_non_object():
    with pytest.raises(TypeError):
        ServiceRecord.from_dict(["web"])


def test_round_trip_preserves_microseconds():
    stamp = datetime(2022, 7, 8, 9, 10, 11, 500000, tzinfo=timezone.utc)
    record = make_record(onboarded_at=stamp)
    assert ServiceRecord.from_dict(record.to_dict()) == record