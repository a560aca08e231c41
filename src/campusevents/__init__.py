"""Campus Events realtime relay.

Moves domain-change notifications (events, tickets, organizations,
analytics) from a durable Redis stream to live WebSocket topics, and
keeps track of which connected clients care about which topics.
"""

__version__ = "0.1.0"
