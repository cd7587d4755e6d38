# src/menu_crawler/queues.py
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import diskcache

logger = logging.getLogger(__name__)

PENDING = "pending"
INFLIGHT = "inflight"


@dataclass
class Delivery:
    delivery_id: str
    message: Dict[str, Any]


class DurableQueue:
    """
    At-least-once message queue on top of diskcache.
    - publish() appends to the pending list
    - get() atomically moves the head message into the in-flight set
    - ack() drops it from in-flight; anything never acked is put back
      at the front by recover()

    Opening a queue leaves in-flight messages alone; the worker calls
    recover() once at startup.
    """

    def __init__(self, directory: str, name: str, *, poll_interval: float = 0.5) -> None:
        self.name = name
        self._cache = diskcache.Cache(os.path.join(directory, name))
        self._poll_interval = poll_interval

    def close(self) -> None:
        self._cache.close()

    @staticmethod
    def _inflight_key(delivery_id: str) -> str:
        return f"{INFLIGHT}:{delivery_id}"

    def _publish(self, message: Dict[str, Any]) -> None:
        self._cache.push(message, prefix=PENDING)

    async def publish(self, message: Dict[str, Any]) -> None:
        await asyncio.to_thread(self._publish, message)
        logger.debug("Queue %s: published %r", self.name, message)

    def _take(self) -> Optional[Delivery]:
        with self._cache.transact():
            key, message = self._cache.pull(prefix=PENDING)
            if key is None:
                return None
            delivery = Delivery(delivery_id=uuid.uuid4().hex, message=message)
            self._cache.set(self._inflight_key(delivery.delivery_id), message)
        return delivery

    def get_nowait(self) -> Optional[Delivery]:
        return self._take()

    async def get(self) -> Delivery:
        """Wait until a message is available and hand it out as a delivery."""
        while True:
            delivery = await asyncio.to_thread(self._take)
            if delivery is not None:
                return delivery
            await asyncio.sleep(self._poll_interval)

    def ack_nowait(self, delivery: Delivery) -> None:
        self._cache.delete(self._inflight_key(delivery.delivery_id))

    async def ack(self, delivery: Delivery) -> None:
        await asyncio.to_thread(self.ack_nowait, delivery)

    def pending(self) -> List[Dict[str, Any]]:
        """Messages waiting to be delivered, oldest first. Does not consume them."""
        keys = sorted(
            key for key in self._cache.iterkeys()
            if isinstance(key, str) and key.startswith(f"{PENDING}-")
        )
        messages = []
        for key in keys:
            message = self._cache.get(key)
            if message is not None:
                messages.append(message)
        return messages

    def unacked(self) -> int:
        return sum(
            1 for key in self._cache.iterkeys()
            if isinstance(key, str) and key.startswith(f"{INFLIGHT}:")
        )

    def recover(self) -> int:
        """Move every unacknowledged message back to the front of the queue."""
        count = 0
        with self._cache.transact():
            for key in list(self._cache.iterkeys()):
                if not (isinstance(key, str) and key.startswith(f"{INFLIGHT}:")):
                    continue
                message = self._cache.pop(key)
                if message is not None:
                    self._cache.push(message, prefix=PENDING, side="front")
                    count += 1
        if count:
            logger.warning("Queue %s: redelivering %d unacknowledged messages", self.name, count)
        return count

    def __len__(self) -> int:
        return sum(
            1 for key in self._cache.iterkeys()
            if isinstance(key, str) and key.startswith(f"{PENDING}-")
        )


class QueueSet:
    """Opens each named queue once so that two roles sharing a name share the queue."""

    def __init__(self, directory: str, *, poll_interval: float = 0.5) -> None:
        self._directory = directory
        self._poll_interval = poll_interval
        self._queues: Dict[str, DurableQueue] = {}

    def get(self, name: str) -> DurableQueue:
        if name not in self._queues:
            self._queues[name] = DurableQueue(self._directory, name, poll_interval=self._poll_interval)
        return self._queues[name]

    def close(self) -> None:
        for queue in self._queues.values():
            queue.close()
        self._queues.clear()
