"""Fanout & keepalive — write-or-prune delivery to every subscriber.

Learn: Broadcasting a batch and sending a keepalive ping are the same
operation with a different payload, so both go through deliver():

  for each subscriber (concurrently):
      write payload, bounded by send_timeout
      failure or timeout → subscriber is pruned (channel closed)

One subscriber's failure never aborts delivery to the rest, and nothing
is raised back to the caller. Delivery is best-effort, at-most-once.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import structlog

from livefeed.feed.models import MatchRecord, batch_to_wire
from livefeed.realtime.registry import Subscriber, SubscriberRegistry

logger = structlog.get_logger()

PING_TYPE = "ping"
PONG_TYPE = "pong"


def ping_message(now: Optional[datetime] = None) -> dict[str, str]:
    """Minimal liveness message: {"type": "ping", "ts": "HH:MM:SS"}."""
    return {"type": PING_TYPE, "ts": (now or datetime.now()).strftime("%H:%M:%S")}


@dataclass
class FanoutStats:
    """Runtime statistics for monitoring."""
    batches_sent: int = 0
    pings_sent: int = 0
    deliveries: int = 0
    pruned: int = 0
    last_broadcast_at: Optional[datetime] = None


class FanoutEngine:
    """Pushes batches and keepalive pings to every registered subscriber."""

    def __init__(
        self,
        registry: SubscriberRegistry,
        *,
        send_timeout: float = 5.0,
        ping_interval: float = 15.0,
    ):
        self.registry = registry
        self.send_timeout = send_timeout
        self.ping_interval = ping_interval
        self.stats = FanoutStats()
        self._running = False

    async def deliver(self, payload: Any, *, kind: str) -> int:
        """Write `payload` to every subscriber, pruning the ones that fail.

        Returns the number of successful writes.
        """
        delivered = 0

        async def write(subscriber: Subscriber) -> bool:
            nonlocal delivered
            try:
                await asyncio.wait_for(subscriber.send(payload), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "fanout.send_timeout",
                    kind=kind,
                    remote=subscriber.remote,
                    timeout=self.send_timeout,
                )
                return False
            except Exception as e:
                logger.warning(
                    "fanout.send_failed",
                    kind=kind,
                    remote=subscriber.remote,
                    error=str(e) or type(e).__name__,
                )
                return False
            delivered += 1
            return True

        pruned = await self.registry.for_each(write)
        self.stats.deliveries += delivered
        self.stats.pruned += len(pruned)
        return delivered

    async def broadcast(self, batch: list[MatchRecord]) -> None:
        """Send one batch (a single JSON array) to every subscriber.

        An empty batch is still sent: it tells clients there are no live
        events right now.
        """
        delivered = await self.deliver(batch_to_wire(batch), kind="batch")
        self.stats.batches_sent += 1
        self.stats.last_broadcast_at = datetime.now()
        logger.info("fanout.batch", matches=len(batch), delivered=delivered)

    async def ping(self) -> None:
        """Send one keepalive ping to every subscriber."""
        delivered = await self.deliver(ping_message(), kind="ping")
        self.stats.pings_sent += 1
        logger.debug("fanout.ping", delivered=delivered)

    async def run_ping_loop(self) -> None:
        """Keepalive loop — sleep, ping, forever (until stop())."""
        self._running = True
        logger.info("fanout.ping_loop_started", ping_interval=self.ping_interval)

        while self._running:
            await asyncio.sleep(self.ping_interval)
            try:
                await self.ping()
            except Exception:
                logger.exception("fanout.ping_error")

    def stop(self) -> None:
        """Signal the ping loop to stop."""
        self._running = False
        logger.info("fanout.stopping")
