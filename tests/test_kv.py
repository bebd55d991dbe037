import pytest

from shipyard.kv import EventType, KeyValue, MemoryKV, WatchEvent


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv(clock):
    return MemoryKV(clock)


def test_put_and_get_round_trip(kv):
    kv.put("/a", "hello")
    entry = kv.get("/a")
    assert entry.key == "/a"
    assert entry.value == b"hello"
    assert entry.lease == 0


def test_get_missing_returns_none(kv):
    assert kv.get("/missing") is None


def test_put_bytes_is_stored_verbatim(kv):
    kv.put("/b", b"\x00\x01")
    assert kv.get("/b").value == b"\x00\x01"


def test_revision_increases_on_each_put(kv):
    first = kv.put("/a", "1")
    second = kv.put("/a", "2")
    assert second.mod_revision > first.mod_revision
    assert kv.get("/a").value == b"2"


def test_get_prefix_is_sorted_and_filtered(kv):
    kv.put("/p/c", "3")
    kv.put("/p/a", "1")
    kv.put("/q/x", "9")
    kv.put("/p/b", "2")
    keys = [entry.key for entry in kv.get_prefix("/p/")]
    assert keys == ["/p/a", "/p/b", "/p/c"]


def test_delete_counts(kv):
    kv.put("/a", "1")
    assert kv.delete("/a") == 1
    assert kv.delete("/a") == 0
    assert kv.get("/a") is None


def test_delete_prefix_removes_only_matching(kv):
    kv.put("/s/x/state", "1")
    kv.put("/s/x/ledger/1", "2")
    kv.put("/s/xy/state", "3")
    assert kv.delete_prefix("/s/x/") == 2
    assert [entry.key for entry in kv.get_prefix("/s/")] == ["/s/xy/state"]


def test_lease_expiry_removes_key(kv, clock):
    lease = kv.grant(30)
    kv.put("/node", "alive", lease)
    clock.now += 29
    assert kv.get("/node").lease == lease
    clock.now += 2
    assert kv.get("/node") is None


def test_put_with_unknown_lease_raises(kv):
    with pytest.raises(LookupError):
        kv.put("/a", "1", lease=12345)


def test_put_with_expired_lease_raises(kv, clock):
    lease = kv.grant(5)
    clock.now += 6
    with pytest.raises(LookupError):
        kv.put("/a", "1", lease)


def test_grant_rejects_non_positive_ttl(kv):
    with pytest.raises(ValueError):
        kv.grant(0)


def test_watch_reports_put_and_delete(kv):
    stream = kv.watch("/w/")
    kv.put("/w/a", "v")
    kv.delete("/w/a")
    put_event = stream.get(timeout=1)
    delete_event = stream.get(timeout=1)
    assert put_event.type is EventType.PUT
    assert put_event.kv.value == b"v"
    assert delete_event.type is EventType.DELETE
    assert delete_event.kv.key == "/w/a"


def test_watch_ignores_other_prefixes(kv):
    stream = kv.watch("/w/")
    kv.put("/other", "v")
    assert stream.get(timeout=0.01) is None


def test_watch_reports_lease_expiry(kv, clock):
    lease = kv.grant(10)
    kv.put("/w/n", "v", lease)
    stream = kv.watch("/w/")
    clock.now += 11
    assert kv.get("/w/n") is None
    event = stream.get(timeout=1)
    assert event == WatchEvent(EventType.DELETE, KeyValue("/w/n", b"", 0, event.kv.mod_revision))


def test_cancel_ends_iteration_after_queued_events(kv):
    stream = kv.watch("/w/")
    kv.put("/w/a", "1")
    kv.put("/w/b", "2")
    stream.cancel()
    kv.put("/w/c", "3")
    assert [event.kv.key for event in stream] == ["/w/a", "/w/b"]
    assert stream.cancelled is True


def test_close_ends_streams_and_rejects_calls(kv):
    stream = kv.watch("")
    kv.close()
    assert stream.get(timeout=1) is None
    with pytest.raises(ConnectionError):
        kv.put("/a", "1")
    with pytest.raises(ConnectionError):
        kv.get("/a")