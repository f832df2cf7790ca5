"""Test fixtures — in-memory subscribers, mocked upstream, app client.

Learn: Nothing here touches the network.
1. FakeChannel is a Subscriber that records what it was sent and can be
   told to fail or stall, so fanout pruning is deterministic.
2. Upstream responses come from httpx.MockTransport, injected into the
   hub/poller as its AsyncClient.
3. The HTTP client uses ASGITransport, which does not run the lifespan,
   so the hub's loops stay stopped unless a test starts them.
"""

import asyncio
from typing import Any, Callable, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from livefeed.config import Settings
from livefeed.hub import LiveFeedHub
from livefeed.main import create_app
from livefeed.realtime.registry import Subscriber, SubscriberRegistry

UPSTREAM_URL = "http://upstream.test/v1/events/inplay?token=secret"


class FakeChannel(Subscriber):
    """Subscriber that keeps sent payloads in memory.

    broken=True simulates a channel the peer already closed: every write raises.
    delay stalls each write (for send-timeout tests).
    """

    def __init__(self, name: str = "client", *, broken: bool = False, delay: float = 0.0):
        super().__init__(remote=f"{name}:5000")
        self.name = name
        self.broken = broken
        self.delay = delay
        self.sent: list[Any] = []
        self.close_calls = 0

    async def _send(self, payload: Any) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        if self.broken:
            raise ConnectionResetError(f"{self.name}: connection reset by peer")
        self.sent.append(payload)

    async def _close(self) -> None:
        self.close_calls += 1


def envelope(*events: Any, success: Any = 1) -> dict:
    """Build an upstream envelope around a list of events."""
    return {"success": success, "results": [list(events)]}


def live_event(name: str = "Match", **fields: Any) -> dict:
    return {"type": "EV", "NA": name, **fields}


def mock_upstream(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose every request is answered by `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def json_upstream(payload: Any, status_code: int = 200) -> httpx.AsyncClient:
    return mock_upstream(lambda request: httpx.Response(status_code, json=payload))


def make_settings(url: Optional[str] = UPSTREAM_URL, **overrides: Any) -> Settings:
    """Settings isolated from the developer's .env file."""
    return Settings(_env_file=None, bookies_api_url=url or "", **overrides)


@pytest.fixture()
def config() -> Settings:
    return make_settings(poll_interval_seconds=1, ping_interval_seconds=1)


@pytest.fixture()
def registry() -> SubscriberRegistry:
    return SubscriberRegistry()


@pytest_asyncio.fixture()
async def hub(config):
    """Hub with a mocked upstream returning one live match. Not started."""
    upstream = json_upstream(envelope(live_event("X", T1="A", T2="B")))
    hub = LiveFeedHub(config, client=upstream)
    try:
        yield hub
    finally:
        await hub.stop()
        await upstream.aclose()


@pytest_asyncio.fixture()
async def client(config, hub):
    """HTTP client against an app that owns `hub`."""
    app = create_app(config, hub=hub)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
