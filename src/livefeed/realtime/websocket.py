"""WebSocket endpoint — the handshake side of the push channel.

Learn: Each client connects to /ws. The handler:
1. Accepts the upgrade and registers a WebSocketSubscriber with the hub
2. Reads the inbound stream until the client disconnects
3. Unregisters the subscriber (closing its channel)

The handler never writes batches itself; the hub's fanout does. The
only reply it sends is a pong to an explicit client ping.

No authentication: the feed is public.
"""

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from livefeed.realtime.fanout import PING_TYPE, PONG_TYPE
from livefeed.realtime.registry import SubscriberClosedError, WebSocketSubscriber

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws")
async def live_feed_websocket(websocket: WebSocket):
    """Subscribe to the live match feed."""
    hub = websocket.app.state.hub

    await websocket.accept()
    subscriber = WebSocketSubscriber(websocket)
    await hub.register(subscriber)
    logger.info("ws.connected", remote=subscriber.remote)

    try:
        while not subscriber.closed:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(msg, dict) and msg.get("type") == PING_TYPE:
                await subscriber.send({"type": PONG_TYPE})
    except WebSocketDisconnect as e:
        logger.info("ws.disconnected", remote=subscriber.remote, code=e.code)
    except SubscriberClosedError:
        # Pruned by fanout after a failed write; the channel is already closed.
        logger.info("ws.pruned", remote=subscriber.remote)
    except RuntimeError:
        # Starlette refuses to receive on a socket the server side closed.
        if not subscriber.closed:
            raise
        logger.info("ws.pruned", remote=subscriber.remote)
    finally:
        await hub.unregister(subscriber)
