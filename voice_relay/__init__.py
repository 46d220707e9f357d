"""WebSocket relay between browser clients and a real-time voice agent."""

__version__ = "0.1.0"
