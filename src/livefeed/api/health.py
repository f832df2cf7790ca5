"""Health check endpoint.

Learn: Reports whether the server is up, whether the last upstream poll
succeeded, and the hub's runtime counters (subscribers, batches, pings).
"""

from fastapi import APIRouter, Request

from livefeed import __version__

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and upstream status."""
    hub = request.app.state.hub
    checks = {"server": "ok", "version": __version__}
    checks["upstream"] = "ok" if hub.upstream_healthy else "degraded"

    status = "healthy" if checks["upstream"] == "ok" else "degraded"

    return {"status": status, **checks, "hub": hub.status()}
