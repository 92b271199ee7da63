"""Tests for the feed client and its reconnect policy."""

import pytest
import requests

from unifi_monitor.client import ConnectionStatus, FeedClient, next_delay
from unifi_monitor.errors import FetchError
from unifi_monitor.messages import connected_message, new_product_message


class FakeSocket:
    def __init__(self, *frames):
        self.frames = list(frames)
        self.closed = False

    def __iter__(self):
        return iter(self.frames)

    def close(self):
        self.closed = True


def _client(connect, fetch=None, stop_after=None, **kwargs):
    """Client whose wait() records delays and stops after ``stop_after`` waits."""
    delays = []
    statuses = []
    client = None

    def wait(delay):
        delays.append(delay)
        if stop_after is not None and len(delays) >= stop_after:
            client.stop()

    client = FeedClient(
        "http://monitor.test/api/products",
        "ws://monitor.test/",
        base_delay=1.0,
        max_delay=10.0,
        connect=connect,
        fetch_products=fetch or (lambda url: []),
        wait=wait,
        on_status=statuses.append,
        **kwargs,
    )
    return client, delays, statuses


def _refuse(url):
    raise ConnectionRefusedError("refused")


class TestNextDelay:
    def test_doubles_up_to_cap(self):
        assert [next_delay(n, 1000, 10000) for n in range(6)] == [1000, 2000, 4000, 8000, 10000, 10000]

    def test_huge_attempt_stays_capped(self):
        assert next_delay(10_000, 1.0, 10.0) == 10.0

    def test_negative_attempt(self):
        with pytest.raises(ValueError):
            next_delay(-1)


def test_handle_message_prepends(make_product):
    seen = []
    client, _, _ = _client(_refuse, on_product=seen.append)
    client.handle_message(new_product_message(make_product("p1")))
    client.handle_message(new_product_message(make_product("p2")))
    assert [p.id for p in client.products] == ["p2", "p1"]
    assert [p.id for p in seen] == ["p1", "p2"]


def test_handle_message_ignores_other_frames():
    client, _, _ = _client(_refuse)
    assert client.handle_message(connected_message()) is None
    assert client.handle_message("garbage") is None
    assert client.handle_message('{"type": "new-product", "product": {"id": ""}}') is None
    assert client.products == []


def test_seed_replaces_list(make_product):
    records = [make_product("a").to_dict(), {"id": "broken"}, make_product("b").to_dict()]
    client, _, _ = _client(_refuse, fetch=lambda url: records)
    client.handle_message(new_product_message(make_product("old")))
    assert client.seed()
    assert [p.id for p in client.products] == ["a", "b"]


def test_seed_failure_keeps_list(make_product):
    def fail(url):
        raise FetchError("down")

    client, _, _ = _client(_refuse, fetch=fail)
    client.handle_message(new_product_message(make_product("p1")))
    assert not client.seed()
    assert [p.id for p in client.products] == ["p1"]


def test_seed_rejects_non_list():
    client, _, _ = _client(_refuse, fetch=lambda url: {"error": "Internal server error"})
    assert not client.seed()


def test_backoff_while_server_unreachable():
    client, delays, statuses = _client(_refuse, stop_after=5)
    client.run()
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert statuses == [
        ConnectionStatus.CONNECTING,
        ConnectionStatus.RECONNECTING,
        ConnectionStatus.DISCONNECTED,
    ]
    assert client.attempt_count == 5


def test_attempts_reset_after_successful_open(make_product):
    outcomes = [
        ConnectionRefusedError("refused"),
        ConnectionRefusedError("refused"),
        FakeSocket(new_product_message(make_product("p1"))),
    ]

    def connect(url):
        result = outcomes.pop(0) if outcomes else ConnectionRefusedError("refused")
        if isinstance(result, Exception):
            raise result
        return result

    client, delays, statuses = _client(connect, stop_after=4)
    client.run()
    assert delays == [1.0, 2.0, 1.0, 2.0]
    assert [p.id for p in client.products] == ["p1"]
    assert ConnectionStatus.CONNECTED in statuses


def test_resync_after_reconnect(make_product):
    fetches = []
    sockets = []

    def fetch(url):
        fetches.append(url)
        return [make_product(f"p{len(fetches)}").to_dict()]

    def connect(url):
        sockets.append(FakeSocket())
        return sockets[-1]

    client, delays, _ = _client(connect, fetch=fetch, stop_after=2)
    client.run()
    # initial seed plus one resync for the second connection
    assert len(fetches) == 2
    assert [p.id for p in client.products] == ["p2"]
    assert delays == [1.0, 1.0]
    assert all(s.closed for s in sockets)


def test_failed_initial_seed_retried_on_first_open(make_product):
    fetches = []

    def fetch(url):
        fetches.append(url)
        if len(fetches) == 1:
            raise requests.ConnectionError("server not up yet")
        return [make_product("p1").to_dict()]

    client, _, _ = _client(lambda url: FakeSocket(), fetch=fetch, stop_after=1)
    client.run()
    assert len(fetches) == 2
    assert [p.id for p in client.products] == ["p1"]


def test_failed_seed_keeps_retrying_until_it_succeeds(make_product):
    fetches = []

    def fetch(url):
        fetches.append(url)
        if len(fetches) < 3:
            raise requests.ConnectionError("server not up yet")
        return [make_product("p1").to_dict()]

    client, _, _ = _client(lambda url: FakeSocket(), fetch=fetch, stop_after=3, resync_on_reconnect=False)
    client.run()
    # initial + first open fail, second open succeeds, third open does not refetch
    assert len(fetches) == 3
    assert [p.id for p in client.products] == ["p1"]


def test_no_resync_when_disabled():
    fetches = []

    def fetch(url):
        fetches.append(url)
        return []

    client, _, _ = _client(lambda url: FakeSocket(), fetch=fetch, stop_after=3, resync_on_reconnect=False)
    client.run()
    assert len(fetches) == 1


def test_state_snapshot(make_product):
    client, _, _ = _client(_refuse)
    client.handle_message(new_product_message(make_product("p1")))
    state = client.state
    assert state.status is ConnectionStatus.DISCONNECTED
    assert state.attempt_count == 0
    assert [p.id for p in state.products] == ["p1"]
