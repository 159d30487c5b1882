"""Core components: logging, wire protocol and the realtime server."""
