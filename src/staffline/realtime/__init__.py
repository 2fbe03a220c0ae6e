"""Real-time infrastructure — Redis pub/sub + WebSocket.

Learn: Events flow through two hops:
1. Services / relayed peers → publish_to_user (Redis PUBLISH, or the
   in-process hub when Redis isn't configured)
2. Per-connection listener → WebSocket → client core event bus

Producers never hold a socket; they only know a user id.
"""
