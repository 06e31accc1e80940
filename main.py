"""FastAPI app: live stream control API and HLS file serving."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncio
import logging
import os

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from ffmpeg_session import SessionSupervisor, current_status
from output_sink import OutputSink
from quality import DEFAULT_QUALITY, resolve
from stream_errors import InvalidSourceAddress, LaunchFailed, ProbeFailed, UnknownQualityTier

import ffmpeg_command
import settings
import stream_probe


log = logging.getLogger(__name__)

HLS_URL = "/hls/stream.m3u8"

ffmpeg_command.init(settings.load_server_settings)

_sink = OutputSink(ffmpeg_command.get_hls_dir())
supervisor = SessionSupervisor(
    _sink,
    grace_sec=float(ffmpeg_command.get_settings().get("stop_grace_secs", 2.0)),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    _sink.directory.mkdir(parents=True, exist_ok=True)
    log.info("HLS output directory: %s", _sink.directory)
    yield
    await asyncio.to_thread(supervisor.shutdown)


app = FastAPI(lifespan=lifespan)
app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
app.mount("/hls", StaticFiles(directory=_sink.directory, check_dir=False), name="hls")


class StreamRequest(BaseModel):
    rtsp_url: str = ""
    quality: str | None = None


class ProbeRequest(BaseModel):
    rtsp_url: str = ""


def _status_payload() -> dict[str, Any]:
    status = current_status(supervisor)
    data = status.to_dict()
    data["hls_url"] = HLS_URL if status.is_active and status.has_ready_output else None
    return data


# ===========================================================================
# Routes
# ===========================================================================


@app.get("/api/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "streaming": supervisor.is_active()}


@app.post("/api/stream/test")
async def test_stream(req: ProbeRequest) -> dict[str, Any]:
    if not req.rtsp_url:
        raise HTTPException(400, "RTSP URL is required")
    try:
        await asyncio.to_thread(stream_probe.probe, req.rtsp_url)
    except ProbeFailed as e:
        raise HTTPException(
            400,
            {"error": f"RTSP URL test failed: {e.detail or e.reason.value}", **e.to_dict()},
        ) from e
    return {"success": True, "message": "RTSP URL is valid and accessible"}


@app.post("/api/stream/start")
async def start_stream(req: StreamRequest) -> dict[str, Any]:
    quality = req.quality or DEFAULT_QUALITY
    try:
        await asyncio.to_thread(supervisor.start, req.rtsp_url, quality)
    except (InvalidSourceAddress, UnknownQualityTier) as e:
        raise HTTPException(400, str(e)) from e
    except LaunchFailed as e:
        raise HTTPException(500, f"Failed to start stream: {e}") from e

    record = await asyncio.to_thread(settings.save_stream_settings, req.rtsp_url, quality, True)
    return {
        "success": True,
        "message": "Stream starting. Poll /api/stream/status until has_ready_output is true.",
        "hls_url": HLS_URL,
        "settings": record,
        "status": _status_payload(),
    }


@app.post("/api/stream/stop")
async def stop_stream() -> dict[str, Any]:
    stopped = await asyncio.to_thread(supervisor.stop)
    await asyncio.to_thread(settings.set_stream_active, False)
    return {
        "success": True,
        "stopped": stopped,
        "message": "Stream stopped" if stopped else "No active stream to stop",
    }


@app.get("/api/stream/status")
def stream_status() -> dict[str, Any]:
    data = _status_payload()
    data["settings"] = settings.get_stream_settings()
    return {"success": True, "data": data}


@app.get("/api/stream/settings")
def get_stream_settings() -> dict[str, Any]:
    return {"success": True, "data": settings.get_stream_settings()}


@app.post("/api/stream/settings")
def save_stream_settings(req: StreamRequest) -> dict[str, Any]:
    if not req.rtsp_url:
        raise HTTPException(400, "RTSP URL is required")
    quality = req.quality or DEFAULT_QUALITY
    try:
        resolve(quality)
    except UnknownQualityTier as e:
        raise HTTPException(400, str(e)) from e
    return {"success": True, "data": settings.save_stream_settings(req.rtsp_url, quality)}


@app.get("/api/debug/hls")
def debug_hls() -> dict[str, Any]:
    return supervisor.sink.describe()


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "5000")),
    )
