"""Server CLI entry point for ``orchestra serve``."""

from __future__ import annotations


def run_server(host: str, port: int, log_level: str = "info") -> None:
    """Start the FastAPI server with uvicorn.

    uvicorn handles SIGINT/SIGTERM; the app lifespan then stops every
    session process and writes the final snapshot.
    """
    import uvicorn

    uvicorn.run(
        "orchestra.server.app:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level.lower(),
    )
