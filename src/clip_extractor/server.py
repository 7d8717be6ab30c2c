"""MCP server for clip-extractor using FastMCP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings

from .core import create_clip, parse_timestamp
from .core.engine import ClipExtractionEngine
from .errors import ClipCutError, EngineLoadError, NotLoadedError


def create_mcp_server(engine: ClipExtractionEngine) -> FastMCP:
    """
    Build the MCP server exposing `engine` as tools.

    Workflow for assistants:
      1. clip_extractor_create_clip      → loads the engine if needed, then cuts
      2. clip_extractor_engine_status    → check whether the runtime is ready
      3. clip_extractor_terminate_engine → free the runtime when done
    """
    # Disable DNS rebinding protection to allow any Host header (for Docker/reverse proxy)
    mcp = FastMCP(
        "clip-extractor",
        transport_security=TransportSecuritySettings(enable_dns_rebinding_protection=False),
    )

    @mcp.tool(name="clip_extractor_load_engine")
    async def tool_load_engine() -> dict:
        """
        Load the media runtime.

        The first load downloads a pinned FFmpeg build (~25MB class), later
        loads reuse it. Creating a clip loads the engine automatically, so this
        is only needed to prepare ahead of time.
        """
        try:
            await engine.load()
        except EngineLoadError as e:
            return {"success": False, "stage": "load", "error": str(e)}
        return {"success": True, **engine.status().model_dump(mode="json")}

    @mcp.tool(name="clip_extractor_engine_status")
    def tool_engine_status() -> dict:
        """Get the engine state (unloaded, loading, loaded, terminated)."""
        return engine.status().model_dump(mode="json")

    @mcp.tool(name="clip_extractor_terminate_engine")
    async def tool_terminate_engine() -> dict:
        """Tear down the media runtime and delete its workspace."""
        await engine.terminate()
        return {"success": True, **engine.status().model_dump(mode="json")}

    @mcp.tool(name="clip_extractor_create_clip")
    async def tool_create_clip(
        source_path: str,
        start: str,
        end: str,
        output_path: str | None = None,
        poster: bool = False,
    ) -> dict:
        """
        Cut a clip out of a video file and save it as MP4 (H.264/AAC).

        Clips must last between the configured minimum and maximum
        (1 to 60 seconds by default).

        Args:
            source_path: Path to the source video
            start: Clip start as seconds (e.g., '30.5') or HH:MM:SS format
            end: Clip end as seconds (e.g., '45') or HH:MM:SS format
            output_path: Where to save the clip (optional)
            poster: Also save a JPEG poster frame next to the clip
        """
        try:
            job = await create_clip(
                engine,
                source_path,
                parse_timestamp(start),
                parse_timestamp(end),
                output_path,
                poster=poster,
            )
        except (FileNotFoundError, ValueError) as e:
            return {"success": False, "stage": "validate", "error": str(e)}
        except EngineLoadError as e:
            return {"success": False, "stage": "load", "error": str(e)}
        except (NotLoadedError, ClipCutError) as e:
            return {"success": False, "stage": "cut", "error": str(e)}

        return {"success": True, **job.model_dump(mode="json")}

    return mcp
