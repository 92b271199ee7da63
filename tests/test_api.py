"""Tests for the bulk-read HTTP API."""

import datetime as dt

import pytest
import requests

from unifi_monitor.api import ApiServer
from unifi_monitor.broadcaster import Broadcaster
from unifi_monitor.store import KnownProductStore


class BrokenStore(KnownProductStore):
    def snapshot_all(self):
        raise OSError("store unavailable")


@pytest.fixture
def serve():
    servers = []

    def _serve(store, broadcaster=None):
        server = ApiServer(store, "127.0.0.1", 0, broadcaster=broadcaster)
        server.start()
        servers.append(server)
        return server

    yield _serve
    for server in servers:
        server.stop()


def _store(tmp_path, make_product, *pids):
    ticks = iter(range(len(pids)))
    base = dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)
    store = KnownProductStore(tmp_path / "products.json", clock=lambda: base + dt.timedelta(hours=next(ticks)))
    for pid in pids:
        store.add(make_product(pid))
    return store


def test_products_most_recent_first(serve, tmp_path, make_product):
    server = serve(_store(tmp_path, make_product, "a", "b", "c"))
    resp = requests.get(server.url + "/api/products", timeout=5)
    assert resp.status_code == 200
    assert resp.headers["Content-Type"] == "application/json"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"
    body = resp.json()
    assert [p["id"] for p in body] == ["c", "b", "a"]
    assert body[0]["discoveredAt"] == "2026-01-01T02:00:00+00:00"
    assert body[0]["thumbnail"] == {"url": "https://cdn.test/c.png"}


def test_empty_store_returns_empty_array(serve, tmp_path):
    server = serve(KnownProductStore(tmp_path / "products.json"))
    resp = requests.get(server.url + "/api/products", timeout=5)
    assert resp.status_code == 200
    assert resp.json() == []


def test_store_failure_is_500(serve, tmp_path):
    server = serve(BrokenStore(tmp_path / "products.json"))
    resp = requests.get(server.url + "/api/products", timeout=5)
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal server error"}


def test_health(serve, tmp_path, make_product, fake_connection):
    broadcaster = Broadcaster()
    broadcaster.accept(fake_connection())
    server = serve(_store(tmp_path, make_product, "a", "b"), broadcaster)
    resp = requests.get(server.url + "/health", timeout=5)
    assert resp.json() == {"status": "ok", "products": 2, "subscribers": 1}


def test_unknown_path_is_404(serve, tmp_path):
    server = serve(KnownProductStore(tmp_path / "products.json"))
    resp = requests.get(server.url + "/api/nothing", timeout=5)
    assert resp.status_code == 404


def test_cors_preflight(serve, tmp_path):
    server = serve(KnownProductStore(tmp_path / "products.json"))
    resp = requests.options(server.url + "/api/products", timeout=5)
    assert resp.status_code == 204
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


def test_stop_is_idempotent(tmp_path):
    server = ApiServer(KnownProductStore(tmp_path / "products.json"), "127.0.0.1", 0)
    server.start()
    assert server.running
    server.stop()
    server.stop()
    assert not server.running
