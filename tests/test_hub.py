"""Hub lifecycle tests.

Learn: Tests cover:
1. A missing upstream URL is fatal at start()
2. A started hub polls the (mocked) upstream and delivers to subscribers
3. stop() halts both loops and closes every subscriber channel
"""

import asyncio

import pytest

from conftest import FakeChannel, json_upstream, make_settings
from livefeed.config import ConfigurationError
from livefeed.feed.pipeline import UpstreamPoller
from livefeed.hub import LiveFeedHub


async def _wait_for(predicate, timeout=3.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_start_without_upstream_url_is_fatal():
    hub = LiveFeedHub(make_settings(url=None))

    with pytest.raises(ConfigurationError, match="BOOKIES_API_URL"):
        await hub.start()

    assert hub.running is False
    assert hub.poller is None


@pytest.mark.asyncio
async def test_start_with_unparseable_upstream_url_is_fatal():
    hub = LiveFeedHub(make_settings(url="http://[::1"))

    with pytest.raises(ConfigurationError, match="not a valid URL"):
        await hub.start()

    assert hub.running is False
    assert hub.poller is None


@pytest.mark.asyncio
async def test_register_and_unregister(hub):
    sub = FakeChannel("a")
    assert await hub.register(sub) is True
    assert hub.registry.count == 1

    assert await hub.unregister(sub) is True
    assert await hub.unregister(sub) is False
    assert hub.registry.count == 0
    assert sub.closed


@pytest.mark.asyncio
async def test_started_hub_delivers_batches(hub):
    sub = FakeChannel("a")
    await hub.register(sub)

    await hub.start()
    assert hub.running
    await _wait_for(lambda: any(isinstance(m, list) for m in sub.sent))

    batch = next(m for m in sub.sent if isinstance(m, list))
    assert batch[0]["match_title"] == "A vs B"
    assert batch[0]["source"] == "bookiesapi"
    assert hub.upstream_healthy


@pytest.mark.asyncio
async def test_start_is_idempotent(hub):
    await hub.start()
    poller = hub.poller
    await hub.start()
    assert hub.poller is poller


@pytest.mark.asyncio
async def test_stop_closes_subscribers_and_loops(hub):
    subs = [FakeChannel(f"c{i}") for i in range(3)]
    for sub in subs:
        await hub.register(sub)
    await hub.start()

    await hub.stop()

    assert hub.running is False
    assert hub.registry.count == 0
    assert all(sub.closed for sub in subs)


@pytest.mark.asyncio
async def test_upstream_outage_sends_nothing():
    upstream = json_upstream({"success": 0})
    hub = LiveFeedHub(make_settings(poll_interval_seconds=1), client=upstream)
    sub = FakeChannel("a")
    await hub.register(sub)

    try:
        await hub.start()
        await _wait_for(lambda: hub.poller.stats.polls_failed >= 1)
    finally:
        await hub.stop()
        await upstream.aclose()

    assert not any(isinstance(m, list) for m in sub.sent)
    assert hub.upstream_healthy is False
    assert hub.fanout.stats.batches_sent == 0


@pytest.mark.asyncio
async def test_status_reports_counters(hub):
    info = hub.status()
    assert info["running"] is False
    assert info["subscribers"] == 0
    assert "upstream" not in info

    await hub.register(FakeChannel("a"))
    await hub.start()
    await _wait_for(lambda: hub.fanout.stats.batches_sent >= 1)

    info = hub.status()
    assert info["running"] is True
    assert info["upstream"] == "upstream.test"
    assert info["polls_ok"] >= 1
    assert info["last_batch_size"] == 1
    assert info["last_error"] is None


@pytest.mark.asyncio
async def test_stop_still_closes_subscribers_after_a_loop_crashed(hub, monkeypatch):
    async def crash(self):
        raise RuntimeError("poll loop crashed")

    monkeypatch.setattr(UpstreamPoller, "run_loop", crash)
    sub = FakeChannel("a")
    await hub.register(sub)
    await hub.start()
    await _wait_for(lambda: hub._tasks[0].done())

    await hub.stop()

    assert hub.running is False
    assert hub.registry.count == 0
    assert sub.closed
    assert sub.close_calls == 1


# ─── Upstream timeout ──────────────────────────────────


@pytest.mark.asyncio
async def test_upstream_timeout_never_exceeds_poll_interval():
    upstream = json_upstream({"success": 0})
    try:
        short = LiveFeedHub(
            make_settings(poll_interval_seconds=1, upstream_timeout_seconds=4.0),
            client=upstream,
        )
        assert short.upstream_timeout == 1.0
        assert short.build_poller().timeout == 1.0

        default = LiveFeedHub(make_settings(), client=upstream)
        assert default.upstream_timeout == 4.0
        assert default.build_poller().timeout == 4.0
    finally:
        await upstream.aclose()
