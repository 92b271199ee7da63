"""Subscriber registry and fan-out for the live product feed.

Each accepted connection becomes a :class:`Subscriber` with a bounded
outbound queue.  ``publish`` only enqueues, so a slow or stuck client can
never hold up delivery to the others; a client whose queue fills up is
disconnected instead.  One writer thread per connection drains the queue
(``run_writer``), which keeps per-connection order equal to publish order,
while the handler thread reads (and ignores) inbound frames so it notices
when the peer goes away.  Closing a connection can block on the closing
handshake, so removed connections are closed by one shared closer thread.

Connections are duck-typed: anything with ``send(str)``, ``ping()``
returning an Event-like object (``is_set()``), ``close()`` and iteration
over inbound frames works, which is what ``websockets.sync`` server
connections provide.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional

from .config import SUBSCRIBER_QUEUE_SIZE
from .errors import DeliveryError
from .messages import DEFAULT_GREETING, connected_message, new_product_message
from .models import Product

logger = logging.getLogger(__name__)


class Subscriber:
    """One live connection plus its outbound buffer and liveness state."""

    def __init__(self, connection: Any, queue_size: int, now: float) -> None:
        self.connection = connection
        self.outbox: "queue.Queue[str]" = queue.Queue(maxsize=queue_size)
        self.connected_at = now
        self.last_pong_at = now
        self.pending_probe: Any = None
        self.closed = threading.Event()

    @property
    def is_open(self) -> bool:
        return not self.closed.is_set()

    def __repr__(self) -> str:
        addr = getattr(self.connection, "remote_address", None)
        return f"<Subscriber {addr or hex(id(self))} open={self.is_open}>"


class Broadcaster:
    def __init__(
        self,
        queue_size: int = SUBSCRIBER_QUEUE_SIZE,
        greeting: str = DEFAULT_GREETING,
        clock: Optional[Callable[[], float]] = None,
        idle_timeout: float = 1.0,
    ) -> None:
        self.queue_size = queue_size
        self.greeting = greeting
        self.idle_timeout = idle_timeout
        self._clock = clock or time.monotonic
        self._subscribers: set[Subscriber] = set()
        self._lock = threading.Lock()
        self._close_queue: "queue.Queue[Any]" = queue.Queue()
        self._closer: Optional[threading.Thread] = None
        self._closer_lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        """Snapshot of the live set, safe to iterate while others add/remove."""
        with self._lock:
            return list(self._subscribers)

    # ---- lifecycle -----------------------------------------------------------

    def accept(self, connection: Any) -> Optional[Subscriber]:
        """Greet and register a new connection. Returns None if the greeting fails."""
        sub = Subscriber(connection, self.queue_size, self._clock())
        try:
            connection.send(connected_message(self.greeting))
        except Exception as e:
            logger.warning("Dropping new subscriber, greeting failed: %s", e)
            _close_quietly(connection)
            return None

        with self._lock:
            self._subscribers.add(sub)
            count = len(self._subscribers)
        logger.info("Subscriber connected %r (%d live)", sub, count)
        return sub

    def serve(self, connection: Any) -> None:
        """Connection handler: register, start the writer, block until the peer disconnects."""
        sub = self.accept(connection)
        if sub is None:
            return
        writer = threading.Thread(
            target=self.run_writer, args=(sub,), name="subscriber-writer", daemon=True
        )
        writer.start()
        reason = "connection closed"
        try:
            for _ in connection:
                # inbound frames are ignored
                continue
        except Exception as e:
            reason = f"connection lost: {e}"
        finally:
            self.remove(sub, reason)
            writer.join(self.idle_timeout + 1.0)

    def remove(self, sub: Subscriber, reason: str = "") -> bool:
        """Unregister and close a subscriber. Safe to call from any thread, any number of times."""
        with self._lock:
            if sub not in self._subscribers:
                return False
            self._subscribers.discard(sub)
            count = len(self._subscribers)
        sub.closed.set()
        logger.info("Subscriber removed %r: %s (%d live)", sub, reason or "closed", count)
        self._schedule_close(sub.connection)
        return True

    def _schedule_close(self, connection: Any) -> None:
        # close() may wait on the closing handshake; one shared thread does them all
        with self._closer_lock:
            if self._closer is None or not self._closer.is_alive():
                self._closer = threading.Thread(
                    target=self._run_closer, name="subscriber-closer", daemon=True
                )
                self._closer.start()
        self._close_queue.put(connection)

    def _run_closer(self) -> None:
        while True:
            connection = self._close_queue.get()
            try:
                _close_quietly(connection)
            finally:
                self._close_queue.task_done()

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Block until every scheduled close has finished. False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._close_queue.all_tasks_done:
            while self._close_queue.unfinished_tasks:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._close_queue.all_tasks_done.wait(remaining)
        return True

    def close_all(self) -> None:
        for sub in self.subscribers():
            self.remove(sub, "shutdown")

    # ---- delivery ------------------------------------------------------------

    def publish(self, product: Product) -> int:
        """Queue one new-product event for every open subscriber. Returns how many took it."""
        message = new_product_message(product)
        queued = 0
        for sub in self.subscribers():
            if not sub.is_open:
                continue
            try:
                sub.outbox.put_nowait(message)
                queued += 1
            except queue.Full:
                self.remove(sub, "outbound queue full")
        logger.info("Published %s (%s) to %d subscribers", product.title, product.id, queued)
        return queued

    def run_writer(self, sub: Subscriber) -> None:
        """Send queued messages in order until the subscriber is closed."""
        while sub.is_open:
            try:
                message = sub.outbox.get(timeout=self.idle_timeout)
            except queue.Empty:
                continue
            if not sub.is_open:
                break
            if self._deliver(sub, message):
                # drain any backlog
                self.flush(sub)

    def flush(self, sub: Subscriber) -> int:
        """Send whatever is queued right now without waiting. Returns messages sent."""
        sent = 0
        while sub.is_open:
            try:
                message = sub.outbox.get_nowait()
            except queue.Empty:
                break
            if self._deliver(sub, message):
                sent += 1
        return sent

    def _deliver(self, sub: Subscriber, message: str) -> bool:
        try:
            sub.connection.send(message)
            return True
        except Exception as e:
            err = DeliveryError(f"send failed: {e}")
            self.remove(sub, str(err))
            return False

    # ---- liveness ------------------------------------------------------------

    def tick(self) -> int:
        """
        Liveness sweep.  A subscriber that has not answered the previous probe
        is terminated; every other subscriber gets a fresh probe.
        Returns the number of subscribers terminated.
        """
        now = self._clock()
        terminated = 0
        for sub in self.subscribers():
            probe = sub.pending_probe
            if probe is not None:
                if not probe.is_set():
                    self.remove(sub, "no response to liveness probe")
                    terminated += 1
                    continue
                sub.last_pong_at = now
            try:
                sub.pending_probe = sub.connection.ping()
            except Exception as e:
                self.remove(sub, f"ping failed: {e}")
                terminated += 1
        if terminated:
            logger.info("Liveness sweep terminated %d subscribers", terminated)
        return terminated


def _close_quietly(connection: Any) -> None:
    try:
        connection.close()
    except Exception:
        logger.debug("Error while closing subscriber connection", exc_info=True)


__all__ = ["Broadcaster", "Subscriber"]
