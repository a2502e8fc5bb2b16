import pytest

from cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_get_returns_value_set_moments_ago(clock):
    c = TTLCache(ttl=300, clock=clock)
    c.set("admin_a@serveit.in", {"id": "a"})
    assert c.get("admin_a@serveit.in") == {"id": "a"}


def test_missing_key_is_absent(clock):
    assert TTLCache(ttl=300, clock=clock).get("nope") is None


def test_entry_expires_and_is_purged_on_read(clock):
    c = TTLCache(ttl=300, clock=clock)
    c.set("k", "v")
    clock.now += 301
    assert "k" in c
    assert c.get("k") is None
    assert "k" not in c
    assert len(c) == 0

    c.set("k", "v2")
    assert c.get("k") == "v2"


def test_entry_still_served_at_exact_ttl(clock):
    c = TTLCache(ttl=300, clock=clock)
    c.set("k", "v")
    clock.now += 300
    assert c.get("k") == "v"


def test_set_overwrites_and_restamps(clock):
    c = TTLCache(ttl=300, clock=clock)
    c.set("k", "old")
    clock.now += 200
    c.set("k", "new")
    clock.now += 200
    assert c.get("k") == "new"


def test_clear_one_or_all(clock):
    c = TTLCache(ttl=300, clock=clock)
    c.set("a", 1)
    c.set("b", 2)
    c.clear("a")
    assert c.get("a") is None
    assert c.get("b") == 2
    c.clear("missing")
    c.clear()
    assert len(c) == 0
