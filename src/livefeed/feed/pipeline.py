"""Poll → normalize → filter pipeline.

Learn: One cycle turns one upstream response body into zero or more
MatchRecords, or abstains:

  GET url → decode JSON → validate envelope → filter events → batch

Failure is scoped to the smallest unit:
- transport / HTTP / JSON / envelope problems abstain the whole cycle
  (UpstreamError, EnvelopeError — logged, never raised out of the loop)
- a malformed or non-live event is silently dropped, the rest survive

There is no retry budget or backoff. The next tick is the retry.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog

from livefeed.feed.models import LIVE_EVENT_TYPE, UPSTREAM_FIELDS, MatchRecord

logger = structlog.get_logger()

BatchHandler = Callable[[list[MatchRecord]], Awaitable[None]]


class UpstreamError(Exception):
    """Transport failure, non-2xx status, or an undecodable body."""


class EnvelopeError(Exception):
    """The decoded document does not have the expected envelope shape."""


# ─── Envelope + event projection ────────────────────────────


def extract_events(document: Any) -> list:
    """Validate the envelope and return the raw event list (results[0]).

    Expected shape: {"success": 1, "results": [[<event>, ...], ...]}
    """
    if not isinstance(document, dict):
        raise EnvelopeError("response is not a JSON object")

    success = document.get("success")
    # JSON true decodes to bool, which is an int subclass; it is not the number 1.
    if isinstance(success, bool) or not isinstance(success, (int, float)) or success != 1:
        raise EnvelopeError(f"success != 1 (got {success!r})")

    results = document.get("results")
    if not isinstance(results, list) or not results:
        raise EnvelopeError("results missing or empty")

    events = results[0]
    if not isinstance(events, list):
        raise EnvelopeError("results[0] is not a list")

    return events


def _get_string(event: dict, key: str) -> str:
    value = event.get(key)
    return value if isinstance(value, str) else ""


def to_match_record(
    event: Any, *, source: str, now: datetime
) -> Optional[MatchRecord]:
    """Project one upstream event into a MatchRecord, or None to drop it."""
    if not isinstance(event, dict):
        return None
    if event.get("type") != LIVE_EVENT_TYPE:
        return None
    if event.get("NA") is None:
        return None

    fields = {field: _get_string(event, key) for key, field in UPSTREAM_FIELDS.items()}
    return MatchRecord(**fields, source=source, ingested_at=now)


def normalize(
    document: Any, *, source: str, now: Optional[datetime] = None
) -> list[MatchRecord]:
    """Envelope → ordered batch. Raises EnvelopeError on a bad envelope.

    Order is upstream array order. An empty batch is a valid result.
    """
    events = extract_events(document)
    stamped_at = now or datetime.now()

    batch: list[MatchRecord] = []
    for event in events:
        record = to_match_record(event, source=source, now=stamped_at)
        if record is None:
            continue
        logger.debug("poller.match_added", name=record.name, match_id=record.id)
        batch.append(record)
    return batch


# ─── Poller ─────────────────────────────────────────────────


@dataclass
class PollerStats:
    """Runtime statistics for monitoring."""
    polls_ok: int = 0
    polls_failed: int = 0
    last_batch_size: int = 0
    last_success_at: Optional[datetime] = None
    last_error: Optional[str] = None


class UpstreamPoller:
    """Fixed-interval poller that hands each good batch to `on_batch`.

    Learn: Same shape as any long-lived background worker here:
    run_loop() until stop(). One poll is in flight at a time; a slow
    upstream delays the next tick instead of overlapping it, and the
    request timeout keeps a stalled upstream from holding the loop.

    Usage:
        poller = UpstreamPoller(url, on_batch=fanout.broadcast)
        asyncio.create_task(poller.run_loop())
    """

    def __init__(
        self,
        url: str,
        on_batch: BatchHandler,
        *,
        poll_interval: float = 5.0,
        timeout: float = 4.0,
        source: str = "bookiesapi",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.source = source
        self.stats = PollerStats()
        self._on_batch = on_batch
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self._running = False

    @property
    def upstream_host(self) -> str:
        """Host only; the full URL may carry an API token."""
        try:
            return httpx.URL(self.url).host
        except httpx.InvalidURL:
            return "<invalid url>"

    async def fetch(self) -> Any:
        """GET the upstream URL and decode the body as generic JSON."""
        try:
            resp = await self._client.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamError(f"request failed: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise UpstreamError(f"invalid JSON: {e}") from e

    async def poll_once(self) -> Optional[list[MatchRecord]]:
        """Run one cycle. Returns the batch, or None if the cycle abstains."""
        log = logger.bind(upstream=self.upstream_host)
        try:
            document = await self.fetch()
            batch = normalize(document, source=self.source)
        except UpstreamError as e:
            self._record_failure(str(e))
            log.warning("poller.upstream_error", error=str(e))
            return None
        except EnvelopeError as e:
            self._record_failure(str(e))
            log.warning("poller.bad_envelope", reason=str(e))
            return None

        self.stats.polls_ok += 1
        self.stats.last_batch_size = len(batch)
        self.stats.last_success_at = datetime.now()
        self.stats.last_error = None
        log.info("poller.batch", matches=len(batch))
        return batch

    async def run_once(self) -> bool:
        """Poll and, on success, emit the batch exactly once."""
        batch = await self.poll_once()
        if batch is None:
            return False
        await self._on_batch(batch)
        return True

    async def run_loop(self) -> None:
        """Main loop — poll, emit, sleep, forever (until stop())."""
        self._running = True
        logger.info(
            "poller.started",
            upstream=self.upstream_host,
            poll_interval=self.poll_interval,
            timeout=self.timeout,
        )

        while self._running:
            try:
                await self.run_once()
            except Exception:
                logger.exception("poller.error")
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        """Signal the loop to stop after the current cycle."""
        self._running = False
        logger.info("poller.stopping")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _record_failure(self, error: str) -> None:
        self.stats.polls_failed += 1
        self.stats.last_error = error
