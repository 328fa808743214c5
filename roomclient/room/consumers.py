"""Consumer-to-producer correspondence.

consumerClosed pushes carry only the consumer id while every cleanup step
works per producer, so each local consumer is recorded against the
producer it subscribes to. Insert and remove happen from several event
handlers, so the map carries its own mutex.
"""

from __future__ import annotations

import threading


class ConsumerProducerMap:
    """Thread-safe consumer_id -> producer_id map."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, str] = {}

    def put(self, consumer_id: str, producer_id: str) -> None:
        with self._lock:
            self._entries[consumer_id] = producer_id

    def get(self, consumer_id: str) -> str | None:
        with self._lock:
            return self._entries.get(consumer_id)

    def pop(self, consumer_id: str) -> str | None:
        """Remove a consumer and return the producer it was subscribed to."""
        with self._lock:
            return self._entries.pop(consumer_id, None)

    def pop_producer(self, producer_id: str) -> list[str]:
        """Remove every consumer of a producer and return their ids."""
        with self._lock:
            consumer_ids = [c for c, p in self._entries.items() if p == producer_id]
            for consumer_id in consumer_ids:
                del self._entries[consumer_id]
            return consumer_ids

    def has_producer(self, producer_id: str) -> bool:
        with self._lock:
            return producer_id in self._entries.values()

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, consumer_id: object) -> bool:
        with self._lock:
            return consumer_id in self._entries
