"""FastAPI application for the routing engine."""

import os

import uvicorn
from fastapi import FastAPI

from dexbundler.api.endpoints import router
from dexbundler.log import configure_logging

# Configuration from environment variables with sensible defaults
HOST = os.environ.get("DEXBUNDLER_HOST", "0.0.0.0")
PORT = int(os.environ.get("DEXBUNDLER_PORT", "8000"))
DEBUG = os.environ.get("DEXBUNDLER_DEBUG", "false").lower() in ("true", "1", "yes")
LOG_JSON = os.environ.get("DEXBUNDLER_LOG_JSON", "false").lower() in ("true", "1", "yes")

app = FastAPI(
    title="dexbundler",
    description="Multi-DEX routing and bundled execution",
    version="0.1.0",
)

app.include_router(router)


@app.get("/health")
async def health() -> dict[str, object]:
    """Health check endpoint."""
    return {"status": "ok"}


def run() -> None:
    """Run the API server.

    Configuration via environment variables:
    - DEXBUNDLER_HOST: Host to bind to (default: 0.0.0.0)
    - DEXBUNDLER_PORT: Port to bind to (default: 8000)
    - DEXBUNDLER_DEBUG: Enable debug/reload mode (default: false)
    - DEXBUNDLER_LOG_JSON: Render logs as JSON (default: false)
    """
    configure_logging("DEBUG" if DEBUG else "INFO", json=LOG_JSON)
    uvicorn.run(
        "dexbundler.api.main:app",
        host=HOST,
        port=PORT,
        reload=DEBUG,
    )


if __name__ == "__main__":
    run()
