"""Web layer shared by the SSE servers: app factory and OAuth routes."""
