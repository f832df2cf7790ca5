"""Subscriber registry — the hub's only shared mutable state.

Learn: Three kinds of tasks touch the registry concurrently:
1. WebSocket handlers — add on handshake, remove when the client leaves
2. The poll loop — broadcast each batch through for_each()
3. The ping loop — keepalive through for_each()

Every mutation and every enumeration snapshot goes through one
asyncio.Lock. Writes to subscribers happen OUTSIDE the lock, over a
snapshot, so a slow client never blocks registration. A subscriber removed
while a write to it is in flight is already marked closed, so that write
fails harmlessly and its removal is a no-op.

Lifecycle: Connected → (write ok)* → Connected
           Connected → (write failure | client left) → Removed (terminal)
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = structlog.get_logger()

SubscriberVisitor = Callable[["Subscriber"], Awaitable[bool]]


class SubscriberClosedError(Exception):
    """Write attempted against a subscriber that has been removed."""


class Subscriber(ABC):
    """One push channel plus its remote identity and liveness state.

    Learn: Implement send/close for a concrete transport. The registry
    only relies on `id`, `closed`, mark_closed() and close().
    """

    def __init__(self, remote: str, subscriber_id: Optional[str] = None):
        self.id = subscriber_id or uuid.uuid4().hex
        self.remote = remote
        self.closed = False

    def mark_closed(self) -> None:
        """Refuse all further writes. Called under the registry lock."""
        self.closed = True

    async def send(self, payload: Any) -> None:
        """Write one JSON message. Raises if the channel is closed or broken."""
        if self.closed:
            raise SubscriberClosedError(f"subscriber {self.remote} is closed")
        await self._send(payload)

    async def close(self) -> None:
        """Close the underlying channel. Safe to call more than once."""
        self.mark_closed()
        await self._close()

    @abstractmethod
    async def _send(self, payload: Any) -> None:
        ...

    @abstractmethod
    async def _close(self) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.remote} id={self.id[:8]}>"


class WebSocketSubscriber(Subscriber):
    """Subscriber backed by an accepted Starlette/FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        client = websocket.client
        remote = f"{client.host}:{client.port}" if client else "unknown"
        super().__init__(remote)
        self.websocket = websocket

    async def _send(self, payload: Any) -> None:
        await self.websocket.send_json(payload)

    async def _close(self) -> None:
        ws = self.websocket
        if (
            ws.application_state != WebSocketState.CONNECTED
            or ws.client_state != WebSocketState.CONNECTED
        ):
            return
        try:
            await ws.close()
        except Exception as e:
            # The peer may have gone away between the state check and close().
            logger.debug("ws.close_failed", remote=self.remote, error=str(e))


class SubscriberRegistry:
    """Concurrency-safe set of active subscribers, keyed by identity."""

    def __init__(self, close_timeout: float = 5.0):
        self.close_timeout = close_timeout
        self._subscribers: dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._subscribers)

    def __contains__(self, subscriber: Subscriber) -> bool:
        return self._subscribers.get(subscriber.id) is subscriber

    @property
    def count(self) -> int:
        return len(self._subscribers)

    async def snapshot(self) -> list[Subscriber]:
        """Point-in-time copy of the members."""
        async with self._lock:
            return list(self._subscribers.values())

    async def add(self, subscriber: Subscriber) -> bool:
        """Insert a subscriber. Idempotent per identity.

        A subscriber that was already removed is never re-admitted; the
        client has to reconnect to get a fresh one. Returns False then.
        """
        async with self._lock:
            if subscriber.closed:
                return False
            self._subscribers[subscriber.id] = subscriber
            total = len(self._subscribers)
        logger.info("registry.added", remote=subscriber.remote, subscribers=total)
        return True

    async def remove(self, subscriber: Subscriber) -> bool:
        """Delete a subscriber (if present) and close its channel.

        Safe on an already-removed subscriber: the map is unchanged and
        close() is a no-op. Returns True only if it was a member.
        """
        removed = await self._detach([subscriber])
        await self._close_many([subscriber])
        if removed:
            logger.info("registry.removed", remote=subscriber.remote, subscribers=self.count)
        return bool(removed)

    async def for_each(self, fn: SubscriberVisitor) -> list[Subscriber]:
        """Visit a snapshot of the members; prune those `fn` rejects.

        `fn(subscriber)` returns False (or raises) to request removal.
        Visits run concurrently. Removals are applied after enumeration,
        under the lock, so the map is never mutated mid-iteration.
        Returns the subscribers that were removed.
        """
        members = await self.snapshot()
        if not members:
            return []

        results = await asyncio.gather(
            *(fn(subscriber) for subscriber in members),
            return_exceptions=True,
        )

        rejected = []
        for subscriber, result in zip(members, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "registry.visit_failed",
                    remote=subscriber.remote,
                    error=repr(result),
                )
                rejected.append(subscriber)
            elif result is False:
                rejected.append(subscriber)

        if not rejected:
            return []

        removed = await self._detach(rejected)
        await self._close_many(rejected)
        if removed:
            logger.info("registry.pruned", pruned=len(removed), subscribers=self.count)
        return removed

    async def close_all(self) -> int:
        """Remove and close every subscriber (clean shutdown)."""
        async with self._lock:
            members = list(self._subscribers.values())
            self._subscribers.clear()
            for subscriber in members:
                subscriber.mark_closed()

        await self._close_many(members)
        logger.info("registry.closed_all", closed=len(members))
        return len(members)

    async def _detach(self, subscribers: list[Subscriber]) -> list[Subscriber]:
        """Drop members from the map and refuse further writes to them."""
        removed = []
        async with self._lock:
            for subscriber in subscribers:
                subscriber.mark_closed()
                if self._subscribers.get(subscriber.id) is subscriber:
                    del self._subscribers[subscriber.id]
                    removed.append(subscriber)
        return removed

    async def _close_many(self, subscribers: list[Subscriber]) -> None:
        """Close channels concurrently, each bounded by close_timeout.

        A peer that never acknowledges the close is abandoned; it is already
        marked closed and out of the map.
        """

        async def close_one(subscriber: Subscriber) -> None:
            try:
                await asyncio.wait_for(subscriber.close(), timeout=self.close_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "registry.close_timeout",
                    remote=subscriber.remote,
                    timeout=self.close_timeout,
                )
            except Exception as e:
                logger.warning("registry.close_failed", remote=subscriber.remote, error=str(e))

        await asyncio.gather(*(close_one(subscriber) for subscriber in subscribers))
