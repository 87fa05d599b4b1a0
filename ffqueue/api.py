"""
FastAPI application and API endpoints for FFQueue
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import FFQueueConfig, get_config
from .errors import FFQueueError, InvalidOptionsError, PauseUnsupportedError
from .jobs import JobQueue, serialize_payload
from .models import (
    EnqueueRequest, HealthResponse, PresetName, QueueStatusResponse, TranscodeOptions,
    VideoPreset,
)
from .transcoding.commands import to_preset, validate_options
from .transcoding.engine import FfmpegService

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Fans queue events out to connected WebSocket clients."""

    def __init__(self):
        self.connections: List[WebSocket] = []

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        message = {"type": event, "data": serialize_payload(payload)}
        if self.connections:
            asyncio.create_task(self._broadcast_message(message))

    async def _broadcast_message(self, message: dict) -> None:
        """Send message to all connected WebSocket clients."""
        disconnected = []
        for ws in self.connections[:]:
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.append(ws)

        for ws in disconnected:
            if ws in self.connections:
                self.connections.remove(ws)

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.connections.append(websocket)
        logger.info(f"WebSocket client connected. Total connections: {len(self.connections)}")

        try:
            while True:
                try:
                    data = await asyncio.wait_for(websocket.receive_text(), timeout=30.0)
                    try:
                        message = json.loads(data)
                        if message.get("type") == "ping":
                            await websocket.send_json({"type": "pong"})
                    except json.JSONDecodeError:
                        pass
                except asyncio.TimeoutError:
                    # Keep-alive; a failed send means the client is gone
                    try:
                        await websocket.send_json({"type": "ping"})
                    except Exception:
                        break
        except WebSocketDisconnect:
            pass
        finally:
            if websocket in self.connections:
                self.connections.remove(websocket)
            logger.info(f"WebSocket client disconnected. Total connections: {len(self.connections)}")


def _error_status(error: FFQueueError) -> int:
    if isinstance(error, InvalidOptionsError):
        return 400
    if isinstance(error, PauseUnsupportedError):
        return 501
    return 500


def _to_options(request: EnqueueRequest) -> TranscodeOptions:
    if request.preset == PresetName.CUSTOM:
        preset = VideoPreset(name=PresetName.CUSTOM, args=request.preset_args)
    else:
        preset = to_preset(request.preset, request.video_codec)

    return TranscodeOptions(
        input=request.input,
        output_dir=request.output_dir,
        output_name=request.output_name,
        container=request.container,
        video_codec=request.video_codec,
        video_preset=preset,
        audio=request.audio,
        extra_args=request.extra_args,
        fast_start=request.fast_start,
        subtitle_path=request.subtitle_path,
    )


def create_app(queue: Optional[JobQueue] = None, config: Optional[FFQueueConfig] = None) -> FastAPI:
    """
    Build the API application.

    If ``queue`` is None the app creates its own FfmpegService and JobQueue on
    startup and stops them on shutdown.
    """
    broadcaster = EventBroadcaster()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.start_time = time.time()
        owned_service: Optional[FfmpegService] = None

        if app.state.queue is None:
            owned_service = FfmpegService(config=config or get_config())
            await owned_service.start()
            app.state.queue = JobQueue(owned_service)

        app.state.queue.on_any(broadcaster.publish)
        logger.info(f"FFQueue v{__version__} API started")

        yield

        logger.info("Shutting down FFQueue...")
        if owned_service:
            await app.state.queue.stop()
            await owned_service.stop()
        logger.info("FFQueue shutdown complete")

    app = FastAPI(
        title="FFQueue",
        description="FFmpeg transcode job queue",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.queue = queue
    app.state.start_time = time.time()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(FFQueueError)
    async def ffqueue_error_handler(request: Request, exc: FFQueueError):
        return JSONResponse(status_code=_error_status(exc), content=exc.to_dict())

    def get_queue(request: Request) -> JobQueue:
        return request.app.state.queue

    def get_job_or_404(request: Request, job_id: str):
        job = get_queue(request).get_job(job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    # ============== API Endpoints ==============

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint."""
        queue = get_queue(request)
        return HealthResponse(
            status="healthy",
            version=__version__,
            uptime_seconds=time.time() - request.app.state.start_time,
            queued_jobs=len(queue.get_pending_jobs()),
            running=queue.running_job is not None,
        )

    @app.post("/api/jobs")
    async def enqueue_job(body: EnqueueRequest, request: Request):
        """Validate and enqueue a transcode job."""
        options = _to_options(body)
        validate_options(options)
        job = get_queue(request).enqueue(options)
        return job.to_dict()

    @app.get("/api/jobs")
    async def list_jobs(request: Request):
        return [job.to_dict() for job in get_queue(request).get_all_jobs()]

    @app.get("/api/jobs/{job_id}")
    async def get_job(job_id: str, request: Request):
        return get_job_or_404(request, job_id).to_dict()

    @app.post("/api/jobs/{job_id}/cancel")
    async def cancel_job(job_id: str, request: Request):
        get_job_or_404(request, job_id)
        if not get_queue(request).cancel(job_id):
            raise HTTPException(status_code=409, detail="Job cannot be cancelled")
        return {"status": "canceled", "job_id": job_id}

    @app.post("/api/jobs/{job_id}/pause")
    async def pause_job(job_id: str, request: Request):
        get_job_or_404(request, job_id)
        if not get_queue(request).pause(job_id):
            raise HTTPException(status_code=409, detail="Job is not running")
        return {"status": "paused", "job_id": job_id}

    @app.post("/api/jobs/{job_id}/resume")
    async def resume_job(job_id: str, request: Request):
        get_job_or_404(request, job_id)
        if not get_queue(request).resume(job_id):
            raise HTTPException(status_code=409, detail="Job is not paused")
        return {"status": "running", "job_id": job_id}

    @app.get("/api/queue", response_model=QueueStatusResponse)
    async def queue_status(request: Request):
        return QueueStatusResponse(**get_queue(request).get_status())

    @app.post("/api/queue/start")
    async def start_queue(request: Request):
        get_queue(request).start()
        return {"status": "started"}

    @app.post("/api/queue/clear")
    async def clear_queue(request: Request):
        cleared = get_queue(request).clear()
        return {"status": "cleared", "cleared": cleared}

    @app.get("/api/blacklist")
    async def blacklist_status(request: Request):
        return get_queue(request).service.get_blacklist_status()

    @app.websocket("/ws")
    async def websocket_events(websocket: WebSocket):
        """WebSocket endpoint streaming every queue event."""
        await broadcaster.handle(websocket)

    return app
