"""Domain-change message contract shared by the publisher and the relay."""
