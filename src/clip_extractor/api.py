"""REST API routes for clip-extractor."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Annotated

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from .core import create_clip, parse_timestamp
from .core.engine import ClipExtractionEngine
from .errors import ClipCutError, EngineLoadError, NotLoadedError
from .models import check_time_range

router = APIRouter()


def get_engine(request: Request) -> ClipExtractionEngine:
    """The engine owned by the running application."""
    return request.app.state.engine


EngineDep = Annotated[ClipExtractionEngine, Depends(get_engine)]


def _error(status_code: int, stage: str, error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "stage": stage, "error": str(error)},
    )


@router.get("/health")
async def health():
    """Health check and service info."""
    return {
        "name": "clip-extractor",
        "version": "0.1.0",
        "status": "healthy",
        "endpoints": {
            "api": "/api",
            "mcp": "/mcp",
            "docs": "/docs",
        },
    }


@router.get("/engine")
async def api_engine_status(engine: EngineDep):
    """Get the engine lifecycle state."""
    return engine.status().model_dump(mode="json")


@router.post("/engine/load")
async def api_engine_load(engine: EngineDep):
    """Load the media runtime (first use fetches the pinned build)."""
    try:
        await engine.load()
    except EngineLoadError as e:
        return _error(503, "load", e)
    return {"success": True, **engine.status().model_dump(mode="json")}


@router.delete("/engine")
async def api_engine_terminate(engine: EngineDep):
    """Tear down the media runtime and its workspace."""
    await engine.terminate()
    return {"success": True, **engine.status().model_dump(mode="json")}


@router.post("/clips")
async def api_cut_clip(
    engine: EngineDep,
    file: Annotated[UploadFile, File(description="Source video (recorder container)")],
    start: Annotated[str, Form(description="Clip start (seconds or HH:MM:SS)")],
    end: Annotated[str, Form(description="Clip end (seconds or HH:MM:SS)")],
):
    """
    Cut a clip out of an uploaded video and return it as MP4.

    The engine is loaded on first use. Failures report which stage failed:
    "validate" (bad range), "load" (runtime could not be prepared) or
    "cut" (this clip could not be cut).
    """
    try:
        start_seconds = parse_timestamp(start)
        end_seconds = parse_timestamp(end)
        check_time_range(start_seconds, end_seconds)
    except ValueError as e:
        return _error(422, "validate", e)

    try:
        if not engine.is_loaded():
            await engine.load()
    except EngineLoadError as e:
        return _error(503, "load", e)

    data = await file.read()
    suffix = Path(file.filename or "").suffix or ".webm"

    try:
        clip = await engine.cut_video(data, start_seconds, end_seconds, source_extension=suffix)
    except NotLoadedError as e:
        return _error(409, "cut", e)
    except ClipCutError as e:
        return _error(500, "cut", e)

    filename = f"clip_{int(time.time() * 1000)}.mp4"
    return Response(
        content=clip.data,
        media_type=clip.media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/clips/file")
async def api_create_clip_file(
    engine: EngineDep,
    source_path: Annotated[str, Query(description="Source video path on the server")],
    start: Annotated[str, Query(description="Clip start (seconds or HH:MM:SS)")],
    end: Annotated[str, Query(description="Clip end (seconds or HH:MM:SS)")],
    output_path: Annotated[str | None, Query(description="Output clip path")] = None,
    poster: Annotated[bool, Query(description="Also save a poster frame")] = False,
):
    """Cut a clip from a video file on the server and save it to disk."""
    try:
        job = await create_clip(
            engine,
            source_path,
            parse_timestamp(start),
            parse_timestamp(end),
            output_path,
            poster=poster,
        )
    except FileNotFoundError as e:
        return _error(404, "validate", e)
    except ValueError as e:
        return _error(422, "validate", e)
    except EngineLoadError as e:
        return _error(503, "load", e)
    except NotLoadedError as e:
        return _error(409, "cut", e)
    except ClipCutError as e:
        return _error(500, "cut", e)

    return {"success": True, **job.model_dump(mode="json")}
