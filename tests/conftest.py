"""Shared fakes for the monitor tests."""

import threading

import pytest

from unifi_monitor.models import Product, Variant


class FakeConnection:
    """Stands in for a websockets server connection."""

    def __init__(self, fail_send=False, answer_pings=True, fail_ping=False):
        self.sent = []
        self.fail_send = fail_send
        self.answer_pings = answer_pings
        self.fail_ping = fail_ping
        self.pings = 0
        self.closed = threading.Event()

    def send(self, message):
        if self.fail_send:
            raise ConnectionResetError("connection reset by peer")
        self.sent.append(message)

    def ping(self):
        if self.fail_ping:
            raise ConnectionResetError("connection reset by peer")
        self.pings += 1
        pong = threading.Event()
        if self.answer_pings:
            pong.set()
        return pong

    def __iter__(self):
        # no inbound frames; iteration ends when the connection is closed
        self.closed.wait()
        return iter(())

    def close(self):
        self.closed.set()


def build_product(pid="p1", title=None, amount=1999, currency="USD", **kwargs):
    return Product(
        id=pid,
        title=title or f"Product {pid}",
        slug=kwargs.pop("slug", f"product-{pid}"),
        short_description=kwargs.pop("short_description", "A thing"),
        thumbnail_url=kwargs.pop("thumbnail_url", f"https://cdn.test/{pid}.png"),
        variants=kwargs.pop("variants", (Variant(f"{pid}-v1", amount, currency),)),
        **kwargs,
    )


@pytest.fixture
def make_product():
    return build_product


@pytest.fixture
def fake_connection():
    return FakeConnection
