"""LiveFeedHub — wires the registry, pipeline, and fanout together.

Learn: The hub runs two long-lived tasks that share one registry:
1. Poll loop — UpstreamPoller.run_loop(), emits each batch to fanout
2. Ping loop — FanoutEngine.run_ping_loop(), keepalive for every client

WebSocket handlers (one short-lived task per connection) only ever call
register()/unregister(). Nothing reaches into the registry's internals.

start() is where configuration is checked: without an upstream URL the
hub raises ConfigurationError and never starts. stop() halts both loops
and closes every subscriber channel.
"""

import asyncio
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from livefeed.config import Settings, require_upstream_url
from livefeed.feed.pipeline import UpstreamPoller
from livefeed.realtime.fanout import FanoutEngine
from livefeed.realtime.registry import Subscriber, SubscriberRegistry

logger = structlog.get_logger()


class LiveFeedHub:
    """Owns the subscriber registry and the two timer loops."""

    def __init__(
        self,
        config: Settings,
        *,
        registry: Optional[SubscriberRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        if registry is None:
            registry = SubscriberRegistry(close_timeout=config.send_timeout_seconds)
        self.registry = registry
        self.fanout = FanoutEngine(
            self.registry,
            send_timeout=config.send_timeout_seconds,
            ping_interval=config.ping_interval_seconds,
        )
        self.poller: Optional[UpstreamPoller] = None
        self.started_at: Optional[datetime] = None
        self._client = client
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # ─── Push-channel interface ────────────────────────────

    async def register(self, subscriber: Subscriber) -> bool:
        """Called once a WebSocket handshake completes."""
        return await self.registry.add(subscriber)

    async def unregister(self, subscriber: Subscriber) -> bool:
        """Called when the client's inbound stream ends."""
        return await self.registry.remove(subscriber)

    # ─── Lifecycle ─────────────────────────────────────────

    @property
    def upstream_timeout(self) -> float:
        """Request timeout, never longer than the poll interval."""
        return min(
            self.config.upstream_timeout_seconds,
            float(self.config.poll_interval_seconds),
        )

    def build_poller(self) -> UpstreamPoller:
        """Create the poller. Raises ConfigurationError without an upstream URL."""
        url = require_upstream_url(self.config)
        return UpstreamPoller(
            url,
            on_batch=self.fanout.broadcast,
            poll_interval=self.config.poll_interval_seconds,
            timeout=self.upstream_timeout,
            source=self.config.source_id,
            client=self._client,
        )

    async def start(self) -> None:
        """Spawn the poll and ping loops."""
        if self.running:
            return

        self.poller = self.build_poller()
        self.started_at = datetime.now()
        self._tasks = [
            asyncio.create_task(self.poller.run_loop(), name="livefeed-poller"),
            asyncio.create_task(self.fanout.run_ping_loop(), name="livefeed-ping"),
        ]
        logger.info(
            "hub.started",
            poll_interval=self.config.poll_interval_seconds,
            ping_interval=self.config.ping_interval_seconds,
        )

    async def stop(self) -> None:
        """Halt both loops and close every subscriber channel."""
        logger.info("hub.stopping", subscribers=self.registry.count)

        if self.poller:
            self.poller.stop()
        self.fanout.stop()

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                # A loop that already died must not stop the shutdown.
                logger.exception("hub.task_failed", task=task.get_name())
        self._tasks = []

        await self.registry.close_all()

        if self.poller:
            await self.poller.aclose()

    # ─── Diagnostics ───────────────────────────────────────

    def status(self) -> dict[str, Any]:
        """Snapshot of hub state for the health endpoint."""
        fanout = self.fanout.stats
        info: dict[str, Any] = {
            "running": self.running,
            "subscribers": self.registry.count,
            "batches_sent": fanout.batches_sent,
            "pings_sent": fanout.pings_sent,
            "subscribers_pruned": fanout.pruned,
        }

        if self.poller:
            polls = self.poller.stats
            info.update({
                "upstream": self.poller.upstream_host,
                "polls_ok": polls.polls_ok,
                "polls_failed": polls.polls_failed,
                "last_batch_size": polls.last_batch_size,
                "last_poll_ok_at": (
                    polls.last_success_at.isoformat() if polls.last_success_at else None
                ),
                "last_error": polls.last_error,
            })
        return info

    @property
    def upstream_healthy(self) -> bool:
        """True once a poll has succeeded since the last failure."""
        return bool(
            self.poller
            and self.poller.stats.last_success_at is not None
            and self.poller.stats.last_error is None
        )
