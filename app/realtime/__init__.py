"""Live connections, rooms and the WebSocket gateway."""
