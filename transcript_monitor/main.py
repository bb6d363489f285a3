"""
Transcript Monitor Service - FastAPI Application

This service:
- Polls a webhook relay for live transcription requests
- Watches a second relay stream for audio-byte heartbeats (recording in progress)
- Exposes the collected segments, the status feed and monitoring controls

RUNNING THE SERVER:
    uvicorn transcript_monitor.main:app --port 8000
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

from transcript_monitor import __version__
from transcript_monitor.config import settings
from transcript_monitor.ingest.poller import TranscriptPoller
from transcript_monitor.memory.state_store import build_state_store
from transcript_monitor.schemas.messages import (
    ConfigUpdate,
    MonitorStatus,
    PollResponse,
    ResetRequest,
    SegmentListResponse,
)
from transcript_monitor.utils.logging import configure_logging, get_logger
from transcript_monitor.utils.relay_api import RelayClient

configure_logging()

logger = get_logger(__name__, category="system")

app = FastAPI(
    title="Transcript Monitor",
    description="Live transcription and recording activity from a webhook relay",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

relay_client = RelayClient(
    api_key=settings.api_key,
    timeout=settings.request_timeout_seconds,
)
poller: Optional[TranscriptPoller] = TranscriptPoller.from_settings(
    settings,
    fetcher=relay_client,
    state_store=build_state_store(settings),
)


def _require_poller() -> TranscriptPoller:
    if poller is None:
        raise HTTPException(status_code=503, detail="Transcript poller unavailable")
    return poller


@app.get("/health")
async def health_check():
    """Service liveness plus whether monitoring is running."""
    return {
        "status": "healthy",
        "service": "transcript-monitor",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "monitoring": bool(poller and poller.is_monitoring),
    }


@app.get("/status", response_model=MonitorStatus)
async def get_status():
    return _require_poller().status()


@app.get("/segments", response_model=SegmentListResponse)
async def list_segments(
    q: Optional[str] = Query(None, description="Filter by text or speaker"),
    limit: Optional[int] = Query(None, ge=1, le=10000),
):
    """Collected segments, newest first."""
    segments = _require_poller().search_segments(q)
    total = len(segments)
    if limit is not None:
        segments = segments[:limit]
    return SegmentListResponse(total=total, segments=segments)


@app.post("/monitor/start", response_model=MonitorStatus)
async def start_monitoring():
    engine = _require_poller()
    await engine.start()
    return engine.status()


@app.post("/monitor/stop", response_model=MonitorStatus)
async def stop_monitoring():
    engine = _require_poller()
    await engine.stop()
    return engine.status()


@app.post("/monitor/poll", response_model=PollResponse)
async def poll_now():
    """Run one poll cycle on demand; no-op if a cycle is already in flight."""
    started, added = await _require_poller().poll_now()
    return PollResponse(started=started, added=added)


@app.post("/monitor/reset", response_model=MonitorStatus)
async def reset_tracking(request: Optional[ResetRequest] = None):
    engine = _require_poller()
    await engine.reset(clear_segments=bool(request and request.clear_segments))
    return engine.status()


@app.patch("/config", response_model=MonitorStatus)
async def update_config(update: ConfigUpdate):
    engine = _require_poller()
    if update.transcript_stream_url is not None and update.transcript_stream_url.strip():
        if not update.transcript_stream_url.strip().startswith(("http://", "https://")):
            raise HTTPException(status_code=400, detail="transcript_stream_url must be an http(s) URL")
    engine.update_config(
        transcript_stream_url=update.transcript_stream_url,
        heartbeat_stream_url=update.heartbeat_stream_url,
        api_key=update.api_key,
        poll_interval_ms=update.poll_interval_ms,
    )
    return engine.status()


# ============================================================================
# STARTUP/SHUTDOWN
# ============================================================================


@app.on_event("startup")
async def startup_event():
    """Restore dedup state and start polling unless autostart is disabled."""
    logger.info(f"Transcript monitor starting on {settings.host}:{settings.port}")

    if poller is None:
        return

    await poller.load_state()

    if not settings.transcript_stream_url:
        logger.warning("TRANSCRIPT_STREAM_URL not set; configure it via PATCH /config")

    if settings.monitor_autostart:
        try:
            await poller.start()
            logger.info("Transcript polling started")
        except Exception as exc:
            logger.error(f"Failed to start transcript polling: {exc}")


@app.on_event("shutdown")
async def shutdown_event():
    """Stop polling, flush dedup state and close network clients."""
    logger.info("Transcript monitor shutting down")

    if poller:
        try:
            await poller.close()
            logger.info("Transcript polling stopped")
        except Exception as exc:
            logger.error(f"Error stopping transcript polling: {exc}")

    try:
        await relay_client.close()
    except Exception as exc:
        logger.error(f"Error closing relay client: {exc}")
