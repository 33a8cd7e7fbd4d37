"""
This module is a simple in-process event bus used to publish the outcome of
gasless transactions to connected subscribers (the websocket clients of the
rpc server).
Each subscriber owns a bounded queue. Publishing never blocks and never
fails: when a subscriber's queue is full the event is dropped for that
subscriber only.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

NotificationEvent = Dict[str, Any]
DEFAULT_QUEUE_SIZE = 100


class NotificationEndpoint:
    subscribers: set[asyncio.Queue]

    def __init__(self, id: str, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.id = id
        self.queue_size = queue_size
        self.subscribers = set()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self.subscribers.add(queue)
        logging.debug(f"{self.id}: subscriber added, total {len(self.subscribers)}")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self.subscribers.discard(queue)
        logging.debug(f"{self.id}: subscriber removed, total {len(self.subscribers)}")

    def broadcast_only(self, event_name: str, payload: NotificationEvent) -> None:
        """
        Publishes an event to every subscriber. Delivery is best-effort.
        """
        event = {
            "event": event_name,
            "data": payload | {
                "timestamp": datetime.now(timezone.utc).isoformat()
            },
        }
        for queue in list(self.subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logging.warning(f"{self.id}: dropping {event_name} for a slow subscriber")
