"""Orchestrate interactive assistant processes behind HTTP and WebSocket."""

__version__ = "0.1.0"
