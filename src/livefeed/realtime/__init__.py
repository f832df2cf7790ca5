"""Real-time delivery — subscriber registry, fanout, and WebSocket endpoint.

Learn: Events flow one way:
1. Pipeline batch / keepalive timer → FanoutEngine
2. FanoutEngine → every subscriber in the SubscriberRegistry

A subscriber whose channel rejects a write is pruned on the spot. It has
to reconnect to get back into the registry.
"""
