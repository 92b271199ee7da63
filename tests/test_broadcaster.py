"""Tests for subscriber registry, fan-out and liveness."""

import json
import threading
import time

from unifi_monitor.broadcaster import Broadcaster
from unifi_monitor.messages import CONNECTED, NEW_PRODUCT


def _types(conn):
    return [json.loads(m)["type"] for m in conn.sent]


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_accept_sends_greeting_first(fake_connection):
    b = Broadcaster(greeting="hi there")
    conn = fake_connection()
    sub = b.accept(conn)
    assert sub is not None
    assert len(b) == 1
    assert json.loads(conn.sent[0]) == {"type": CONNECTED, "message": "hi there"}


def test_failed_greeting_is_not_registered(fake_connection):
    b = Broadcaster()
    conn = fake_connection(fail_send=True)
    assert b.accept(conn) is None
    assert len(b) == 0
    assert conn.closed.is_set()


def test_publish_preserves_order(fake_connection, make_product):
    b = Broadcaster()
    conn = fake_connection()
    sub = b.accept(conn)
    for pid in ("p1", "p2", "p3"):
        assert b.publish(make_product(pid)) == 1
    assert b.flush(sub) == 3
    ids = [json.loads(m)["product"]["id"] for m in conn.sent[1:]]
    assert ids == ["p1", "p2", "p3"]
    assert _types(conn) == [CONNECTED, NEW_PRODUCT, NEW_PRODUCT, NEW_PRODUCT]


def test_send_failure_drops_only_that_subscriber(fake_connection, make_product):
    b = Broadcaster()
    healthy = fake_connection()
    broken = fake_connection()
    good_sub = b.accept(healthy)
    bad_sub = b.accept(broken)
    broken.fail_send = True

    assert b.publish(make_product("p1")) == 2
    b.flush(bad_sub)
    b.flush(good_sub)

    assert b.subscribers() == [good_sub]
    assert not bad_sub.is_open
    assert _types(healthy) == [CONNECTED, NEW_PRODUCT]
    assert broken.closed.wait(1)


def test_full_queue_disconnects_slow_subscriber(fake_connection, make_product):
    b = Broadcaster(queue_size=1)
    slow = b.accept(fake_connection())
    fast_conn = fake_connection()
    fast = b.accept(fast_conn)

    b.publish(make_product("p1"))
    b.flush(fast)
    assert b.publish(make_product("p2")) == 1
    assert b.subscribers() == [fast]
    assert not slow.is_open


def test_unanswered_probe_terminates_on_second_tick(fake_connection, make_product):
    b = Broadcaster()
    silent = fake_connection(answer_pings=False)
    sub = b.accept(silent)

    assert b.tick() == 0
    assert silent.pings == 1
    assert b.tick() == 1
    assert len(b) == 0
    assert not sub.is_open
    assert silent.closed.wait(1)

    # no further deliveries after termination
    assert b.publish(make_product("p1")) == 0
    assert b.flush(sub) == 0
    assert _types(silent) == [CONNECTED]


def test_answered_probes_keep_subscriber(fake_connection):
    ticks = iter(range(100))
    b = Broadcaster(clock=lambda: next(ticks))
    conn = fake_connection()
    sub = b.accept(conn)
    for _ in range(5):
        assert b.tick() == 0
    assert sub.is_open
    assert conn.pings == 5
    assert sub.last_pong_at > sub.connected_at


def test_ping_failure_terminates(fake_connection):
    b = Broadcaster()
    b.accept(fake_connection(fail_ping=True))
    assert b.tick() == 1
    assert len(b) == 0


def test_remove_is_idempotent(fake_connection):
    b = Broadcaster()
    sub = b.accept(fake_connection())
    assert b.remove(sub, "test")
    assert not b.remove(sub, "test")


def test_close_all(fake_connection):
    b = Broadcaster()
    conns = [fake_connection() for _ in range(3)]
    for conn in conns:
        b.accept(conn)
    b.close_all()
    assert len(b) == 0
    assert all(conn.closed.wait(1) for conn in conns)


def test_serve_drains_outbox_until_removed(fake_connection, make_product):
    b = Broadcaster(idle_timeout=0.05)
    conn = fake_connection()
    handler = threading.Thread(target=b.serve, args=(conn,), daemon=True)
    handler.start()

    assert _wait_for(lambda: len(b) == 1)
    b.publish(make_product("p1"))
    assert _wait_for(lambda: len(conn.sent) == 2)

    b.close_all()
    handler.join(2)
    assert not handler.is_alive()
    assert _types(conn) == [CONNECTED, NEW_PRODUCT]


def test_churn_uses_one_closer_thread(fake_connection, monkeypatch):
    started = []
    real_thread = threading.Thread

    class CountingThread(real_thread):
        def start(self):
            started.append(self.name)
            super().start()

    monkeypatch.setattr(threading, "Thread", CountingThread)

    b = Broadcaster()
    conns = [fake_connection() for _ in range(50)]
    for conn in conns:
        b.remove(b.accept(conn), "churn")

    assert b.wait_closed(2)
    assert all(conn.closed.is_set() for conn in conns)
    assert started.count("subscriber-closer") == 1


def test_wait_closed_times_out_on_stuck_close(fake_connection):
    release = threading.Event()

    class StuckConnection(fake_connection):
        def close(self):
            release.wait(5)
            super().close()

    b = Broadcaster()
    conn = StuckConnection()
    b.remove(b.accept(conn), "test")
    try:
        assert not b.wait_closed(0.05)
    finally:
        release.set()
    assert b.wait_closed(2)
    assert conn.closed.is_set()


def test_writer_drains_backlog_in_order(fake_connection, make_product):
    b = Broadcaster(idle_timeout=0.05)
    conn = fake_connection()
    sub = b.accept(conn)
    for pid in ("p1", "p2", "p3"):
        b.publish(make_product(pid))

    writer = threading.Thread(target=b.run_writer, args=(sub,), daemon=True)
    writer.start()
    assert _wait_for(lambda: len(conn.sent) == 4)
    b.remove(sub, "done")
    writer.join(2)
    assert not writer.is_alive()
    assert [json.loads(m)["product"]["id"] for m in conn.sent[1:]] == ["p1", "p2", "p3"]
