"""Livefeed — live sports feed broadcast hub.

Polls a third-party live-events API, normalizes and filters the snapshot,
and pushes it to every connected WebSocket subscriber.
"""

__version__ = "0.1.0"
