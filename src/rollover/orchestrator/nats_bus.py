"""NATS-backed event bus so other services can watch rollovers."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from concurrent.futures import Future
import json
import logging
from queue import Empty, Queue
from threading import Lock, Thread
from typing import Any

from nats.aio.client import Client as NATS

from rollover.orchestrator.event_bus import Event

logger = logging.getLogger(__name__)


def encode_event(event: Event) -> bytes:
    return json.dumps(event.to_dict(), default=str).encode("utf-8")


def decode_event(data: bytes) -> Event:
    return Event.from_dict(json.loads(data.decode("utf-8")))


class NATSEventBus:
    """Publishes progress events to NATS subjects ``<prefix>.<rest of type>``.

    The client runs on a private asyncio loop in a daemon thread; the public
    methods are synchronous like the in-memory bus.
    """

    def __init__(
        self, url: str, subject_prefix: str = "rollover", connect_timeout: float = 10.0
    ) -> None:
        self._url = url
        self._prefix = subject_prefix
        self._queues: dict[str, Queue[Event]] = {}
        self._lock = Lock()
        self._loop = asyncio.new_event_loop()
        self._client = NATS()
        self._thread = Thread(target=self._run_loop, name="nats-bus", daemon=True)
        self._thread.start()
        try:
            self._submit(self._client.connect(servers=[url])).result(connect_timeout)
        except Exception as exc:
            self._loop.call_soon_threadsafe(self._loop.stop)
            raise ConnectionError(f"cannot reach NATS at {url}: {exc}") from exc
        logger.info("event_bus.connected", extra={"extra": {"url": url}})

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def _submit(self, coro: Any) -> Future[Any]:
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def subject(self, event_type: str) -> str:
        head = f"{self._prefix}."
        return event_type if event_type.startswith(head) else f"{head}{event_type}"

    def _queue_for(self, event_type: str) -> Queue[Event]:
        with self._lock:
            if event_type not in self._queues:
                queue: Queue[Event] = Queue()
                self._queues[event_type] = queue

                async def handler(msg: Any) -> None:
                    queue.put(decode_event(msg.data))

                self._submit(self._client.subscribe(self.subject(event_type), cb=handler))
            return self._queues[event_type]

    def publish(self, event: Event) -> None:
        future = self._submit(self._client.publish(self.subject(event.event_type), encode_event(event)))

        def _report(done: Future[Any]) -> None:
            if done.exception() is not None:
                logger.warning(
                    "event_bus.publish.failed",
                    extra={"extra": {"event_type": event.event_type, "error": str(done.exception())}},
                )

        future.add_done_callback(_report)

    def subscribe(self, event_type: str) -> Iterator[Event]:
        queue = self._queue_for(event_type)
        while True:
            yield queue.get()

    def next_event(self, event_type: str, timeout: float | None = None) -> Event | None:
        try:
            return self._queue_for(event_type).get(timeout=timeout)
        except Empty:
            return None

    def close(self, timeout: float = 5.0) -> None:
        """Flush pending publishes and stop the loop."""
        try:
            self._submit(self._client.drain()).result(timeout)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
