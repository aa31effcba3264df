"""HTTP and WebSocket surface over the session process layer.

Public API: create_app
Internal: auth, connections, models, routes, services
"""

from orchestra.server.app import create_app

__all__ = ["create_app"]
