"""
Broadcast hub for graph deltas.

Fans out DeltaMessages from the graph engine to every connected observer
through explicit, bounded per-subscriber channels.

Design Principles:
- Explicit message passing (no ambient event emitter)
- One bounded asyncio.Queue per subscriber
- Publish never blocks and never raises: a closed subscriber is skipped,
  a subscriber whose channel is full is closed (slow consumer)
- Failures are isolated per subscriber and never reach the graph store

Architecture:
    GraphEngine (single writer) -> BroadcastHub.publish -> [Subscriber channels]
    Subscriber channel -> per-connection pump task -> WebSocket

Usage:
    hub = BroadcastHub(channel_size=256)
    subscriber = hub.subscribe()

    hub.publish(DeltaMessage(type="node:added", data=node))

    async for message in subscriber:
        await websocket.send_text(encode_json(message).decode())
"""
import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional


logger = logging.getLogger("swarmgraph.broadcast")

# End-of-stream marker placed in a channel when its subscriber closes
_CLOSED = None


class Subscriber:
    """
    One observer's bounded delivery channel.

    Messages are consumed with `await receive()` or `async for`. Once the
    subscriber is closed, already-queued messages are still drained and
    then receive() returns None.
    """

    def __init__(self, subscriber_id: str, channel_size: int = 256):
        self.id = subscriber_id
        self._channel: asyncio.Queue = asyncio.Queue(maxsize=channel_size + 1)
        self._capacity = channel_size
        self._open = True
        self.delivered = 0

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def pending(self) -> int:
        """Messages queued but not yet received."""
        return self._channel.qsize()

    def offer(self, message: Any) -> bool:
        """
        Queue a message without blocking.

        Returns:
            True if queued. False if the subscriber is closed, or if its
            channel was full, in which case the subscriber is closed.
        """
        if not self._open:
            return False

        if self._channel.qsize() >= self._capacity:
            logger.warning(f"Subscriber {self.id} fell {self._capacity} messages behind; closing")
            self.close()
            return False

        self._channel.put_nowait(message)
        self.delivered += 1
        return True

    async def receive(self) -> Optional[Any]:
        """Next message, or None once closed and drained."""
        message = await self._channel.get()
        if message is _CLOSED:
            # keep the marker so later receive() calls also see the end
            self._channel.put_nowait(_CLOSED)
        return message

    def close(self) -> None:
        """Close the channel. Idempotent."""
        if not self._open:
            return
        self._open = False
        # one slot is reserved for the marker
        self._channel.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.receive()
        if message is _CLOSED:
            raise StopAsyncIteration
        return message

    def __repr__(self) -> str:
        state = "open" if self._open else "closed"
        return f"Subscriber({self.id!r}, {state}, pending={self.pending})"


class BroadcastHub:
    """
    Tracks subscribers and delivers every published message to each open one.

    Thread Safety:
        NOT thread-safe. All calls are made from the event loop; publish()
        is synchronous, so the order of publish() calls is the order every
        subscriber observes.
    """

    def __init__(self, channel_size: int = 256):
        """
        Args:
            channel_size: Default per-subscriber channel capacity
        """
        self.channel_size = channel_size
        self._subscribers: Dict[str, Subscriber] = {}
        self._ids = itertools.count(1)

    def subscribe(self, channel_size: Optional[int] = None) -> Subscriber:
        """
        Register a new subscriber.

        Args:
            channel_size: Override the default channel capacity

        Returns:
            The open Subscriber
        """
        subscriber = Subscriber(
            f"sub-{next(self._ids)}",
            channel_size=channel_size or self.channel_size,
        )
        self._subscribers[subscriber.id] = subscriber
        logger.debug(f"Subscribed {subscriber.id} ({len(self._subscribers)} total)")
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> bool:
        """
        Remove and close a subscriber.

        Returns:
            True if it was registered
        """
        removed = self._subscribers.pop(subscriber.id, None) is not None
        subscriber.close()
        if removed:
            logger.debug(f"Unsubscribed {subscriber.id} ({len(self._subscribers)} remain)")
        return removed

    def publish(self, message: Any) -> int:
        """
        Offer a message to every open subscriber.

        Closed or overflowing subscribers are pruned.

        Returns:
            Number of subscribers the message was queued for
        """
        delivered = 0
        dead: List[str] = []

        for subscriber in self._subscribers.values():
            if subscriber.offer(message):
                delivered += 1
            else:
                dead.append(subscriber.id)

        for subscriber_id in dead:
            self._subscribers.pop(subscriber_id, None)
        if dead:
            logger.debug(f"Pruned {len(dead)} closed subscribers")

        return delivered

    def close_all(self) -> None:
        """Close every subscriber and forget them."""
        for subscriber in self._subscribers.values():
            subscriber.close()
        count = len(self._subscribers)
        self._subscribers.clear()
        if count:
            logger.info(f"Closed {count} subscribers")

    @property
    def subscriber_count(self) -> int:
        """Number of registered subscribers."""
        return len(self._subscribers)

    def subscribers(self) -> List[Subscriber]:
        """Registered subscribers, oldest first."""
        return list(self._subscribers.values())
