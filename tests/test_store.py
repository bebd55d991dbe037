import json

import pytest

from shipyard.kv import EventType, MemoryKV
from shipyard.store import (
    PREFIX_STACKS,
    Store,
    StoreError,
    container_key,
    ledger_key,
    service_key,
    stack_state_key,
    strip_prefix,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class Payload:
    def __init__(self, name):
        self.name = name

    def to_dict(self):
        return {"name": self.name}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return Store(MemoryKV(clock))


def test_put_get_round_trip(store):
    value = {"name": "web", "tags": ["a", "b"], "count": 3}
    store.put("/k", value)
    assert store.get("/k") == value


def test_put_uses_to_dict(store):
    store.put("/obj", Payload("api"))
    assert store.get("/obj") == {"name": "api"}


def test_get_missing_is_none(store):
    assert store.get("/nothing") is None


def test_default_client_works():
    with Store() as default_store:
        default_store.put("/x", [1, 2])
        assert default_store.get("/x") == [1, 2]


def test_ttl_expires(store, clock):
    store.put("/node", {"id": "n1"}, ttl=30)
    clock.now = 29
    assert store.get("/node") == {"id": "n1"}
    clock.now = 31
    assert store.get("/node") is None


def test_list_returns_raw_json_in_key_order(store):
    store.put("/p/b", {"v": 2})
    store.put("/p/a", {"v": 1})
    store.put("/q/a", {"v": 9})
    listed = store.list("/p/")
    assert [key for key, _ in listed] == ["/p/a", "/p/b"]
    assert [json.loads(raw) for _, raw in listed] == [{"v": 1}, {"v": 2}]
    assert store.raw_list("/p/") == listed


def test_delete_and_delete_prefix(store):
    store.put("/s/web/state", {})
    store.put("/s/web/ledger/1", {})
    store.put("/s/db/state", {})
    store.delete("/missing")
    store.delete_prefix("/s/web/")
    assert [key for key, _ in store.list("/s/")] == ["/s/db/state"]
    store.raw_delete("/s/db/state")
    assert store.list("/s/") == []


def test_raw_put_stores_text_verbatim(store):
    store.raw_put("/raw", '{"a":1}')
    assert store.raw_get("/raw") == {"a": 1}
    assert store.list("/raw") == [("/raw", b'{"a":1}')]


def test_get_invalid_json_raises(store):
    store.raw_put("/bad", "{not json")
    with pytest.raises(StoreError):
        store.get("/bad")


def test_unserialisable_value_raises(store):
    with pytest.raises(StoreError):
        store.put("/bad", object())


def test_closed_client_raises_store_error(store):
    store.close()
    with pytest.raises(StoreError):
        store.get("/k")
    with pytest.raises(StoreError):
        store.put("/k", {})


def test_watch_reports_changes(store):
    stream = store.watch(PREFIX_STACKS)
    store.put(stack_state_key("web"), {"state": "running"})
    event = stream.get(timeout=1)
    assert event.type is EventType.PUT
    assert event.kv.key == stack_state_key("web")
    assert json.loads(event.kv.value) == {"state": "running"}
    stream.cancel()


def test_key_helpers():
    assert service_key("web") == "/shipyard/services/web"
    assert stack_state_key("web") == "/shipyard/stacks/web/state"
    assert container_key("abc") == "/shipyard/containers/abc"
    assert ledger_key("web", 42) == "/shipyard/stacks/web/ledger/00000000000000000042"


def test_ledger_keys_sort_by_time():
    keys = [ledger_key("web", ts) for ts in (10, 9, 1000)]
    assert sorted(keys) == [ledger_key("web", 9), ledger_key("web", 10), ledger_key("web", 1000)]


def test_strip_prefix():
    assert strip_prefix(service_key("web"), "/shipyard/services/") == "web"
    assert strip_prefix("other", "/shipyard/services/") == "other"