"""Realtime infrastructure — Redis stream in, Redis pub/sub + WebSocket out.

Learn: Notifications flow through two channels:
1. Services → Redis stream XADD (durable, acknowledged per message)
2. Relay → Redis PUBLISH per topic → WebSocket → browser

The relay in between decides which topics each notification reaches.
"""
