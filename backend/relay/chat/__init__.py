"""Real-time encrypted chat relay (WebSocket protocol, history, access control)."""
