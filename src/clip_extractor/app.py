"""FastAPI application for clip-extractor."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api import router as api_router
from .config import ensure_dirs
from .core.engine import ClipExtractionEngine
from .core.scheduler import CleanupScheduler
from .server import create_mcp_server


def create_app(engine: ClipExtractionEngine | None = None) -> FastAPI:
    """
    Build the application around one clip extraction engine.

    The engine is shared by the REST routes and the MCP tools and is
    terminated when the application shuts down.
    """
    engine = engine or ClipExtractionEngine()
    mcp = create_mcp_server(engine)
    cleanup_scheduler = CleanupScheduler()

    # Creates the MCP session manager used by the lifespan
    mcp_app = mcp.streamable_http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan."""
        ensure_dirs()
        await cleanup_scheduler.start()

        async with mcp.session_manager.run():
            yield

        await engine.terminate()
        await cleanup_scheduler.stop()

    app = FastAPI(
        title="Clip Extractor",
        description="Cut time ranges out of recorded videos into shareable MP4 clips",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.engine = engine

    app.include_router(api_router, prefix="/api", tags=["API"])

    # Mount MCP server routes (streamable HTTP only, provides /mcp endpoint)
    app.mount("/", mcp_app)

    return app


app = create_app()


def main():
    """Run the server."""
    import uvicorn

    uvicorn.run(
        "clip_extractor.app:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
    )


if __name__ == "__main__":
    main()
