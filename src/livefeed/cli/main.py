"""Livefeed CLI — run the hub, poll upstream once, check a running server.

Usage:
    livefeed serve                        # Start the hub (HTTP + /ws)
    livefeed poll                         # One upstream poll, print the batch
    livefeed poll --json                  # ...as the JSON subscribers receive
    livefeed status                       # Health of a running hub
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from typing import Optional

import click
import httpx
import structlog

from livefeed import __version__
from livefeed.config import ConfigurationError, Settings, require_upstream_url
from livefeed.feed.models import batch_to_wire
from livefeed.feed.pipeline import UpstreamPoller

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_SERVER_URL = "http://localhost:8083"


def _server_url() -> str:
    return os.environ.get("LIVEFEED_SERVER_URL", DEFAULT_SERVER_URL).rstrip("/")


def _load_settings(url: Optional[str] = None) -> Settings:
    """Load settings, exiting with a red error if the upstream URL is missing."""
    config = Settings()
    if url:
        config = config.model_copy(update={"bookies_api_url": url})
    try:
        require_upstream_url(config)
    except ConfigurationError as e:
        click.secho(f"Error: {e}", fg="red", err=True)
        sys.exit(1)
    return config


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="livefeed")
def main():
    """Livefeed — live sports feed broadcast hub."""
    # Logs go to stderr so command output (e.g. poll --json) stays parseable.
    structlog.configure(logger_factory=lambda *args: structlog.PrintLogger(sys.stderr))


# ---------------------------------------------------------------------------
# livefeed serve
# ---------------------------------------------------------------------------


@main.command()
@click.option("--host", help="Bind address (default: HOST or 0.0.0.0)")
@click.option("--port", "-p", type=int, help="Bind port (default: PORT or 8083)")
def serve(host: Optional[str], port: Optional[int]):
    """Start the hub: upstream poller, keepalive, and the /ws endpoint."""
    import uvicorn

    config = _load_settings()
    uvicorn.run(
        "livefeed.main:app",
        host=host or config.host,
        port=port or config.port,
    )


# ---------------------------------------------------------------------------
# livefeed poll
# ---------------------------------------------------------------------------


@main.command()
@click.option("--url", help="Upstream URL override (default: BOOKIES_API_URL)")
@click.option("--json", "as_json", is_flag=True, help="Print the batch as JSON")
def poll(url: Optional[str], as_json: bool):
    """Poll upstream once and print the normalized batch."""
    config = _load_settings(url)
    batch = asyncio.run(_poll_impl(config))

    if batch is None:
        click.secho("Upstream poll failed — see log output above.", fg="red", err=True)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(batch_to_wire(batch), indent=2, ensure_ascii=False))
        return

    if not batch:
        click.echo("No live matches.")
        return

    click.secho(f"Live matches ({len(batch)}):", bold=True)
    click.echo()
    _print_table(
        [
            {
                "id": r.id,
                "title": r.display_title,
                "score": r.score,
                "minute": r.minute,
                "league": r.league,
            }
            for r in batch
        ],
        [("ID", "id", 12), ("MATCH", "title", 36), ("SCORE", "score", 7),
         ("MIN", "minute", 5), ("LEAGUE", "league", 24)],
    )


async def _poll_impl(config: Settings):
    async def discard(batch):
        return None

    poller = UpstreamPoller(
        config.bookies_api_url,
        on_batch=discard,
        timeout=config.upstream_timeout_seconds,
        source=config.source_id,
    )
    try:
        return await poller.poll_once()
    finally:
        await poller.aclose()


# ---------------------------------------------------------------------------
# livefeed status
# ---------------------------------------------------------------------------


@main.command()
def status():
    """Show health and counters of a running hub (LIVEFEED_SERVER_URL)."""
    try:
        r = httpx.get(f"{_server_url()}/api/v1/health", timeout=10.0)
        r.raise_for_status()
    except httpx.HTTPError as e:
        click.secho(f"Hub unreachable at {_server_url()}: {e}", fg="red", err=True)
        sys.exit(1)

    data = r.json()
    color = "green" if data["status"] == "healthy" else "yellow"
    click.secho(f"Hub {data['version']}: {data['status']}", fg=color, bold=True)
    click.echo()
    for key, value in data.get("hub", {}).items():
        click.echo(f"  {key:20s}  {value}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
