"""Sync Service - FastAPI application running the realtime Simplenote to Notion sync.

Out of the box, changes arrive on POST /internal/changes. A deployment with a
Simperium transport registers it before the app starts; the service then keeps
it connected, renewing SIMPERIUM_TOKEN when the feed reports it unauthorized:

    from services.sync_service import main

    def open_feed(app_id, token):
        return SimperiumNoteFeed(app_id=app_id, token=token, bucket="note")

    main.register_source_factory(open_feed)
    main.run()

``open_feed`` returns a ChangeEventSource and receives SIMPERIUM_APP_ID and the
current token.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from functools import partial
from typing import List, Optional

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from shared.config import SyncSettings, get_env_file, load_env_file
from services.simplenote_listener.auth import SimperiumTokenRenewer
from services.simplenote_listener.source import ConnectionSupervisor, RealtimeSourceFactory
from services.sync_service.pipeline import SyncPipeline

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

# Global instances
pipeline: Optional[SyncPipeline] = None
supervisor: Optional[ConnectionSupervisor] = None
source_factory: Optional[RealtimeSourceFactory] = None


def register_source_factory(factory: Optional[RealtimeSourceFactory]) -> None:
    """Set the realtime change source used by the service on startup.

    The factory is called with SIMPERIUM_APP_ID and an access token.
    """
    global source_factory
    source_factory = factory


def build_pipeline() -> SyncPipeline:
    """Create the sync pipeline from the environment."""
    load_env_file()
    return SyncPipeline(SyncSettings.from_env())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global pipeline, supervisor

    logger.info("Sync Service starting up...")

    pipeline = build_pipeline()
    await pipeline.start()
    logger.info("Notion database resolved, pipeline ready")

    if source_factory is not None:
        settings = pipeline.settings
        supervisor = ConnectionSupervisor(
            partial(source_factory, settings.simperium_app_id),
            on_change=pipeline.on_change,
            renewer=SimperiumTokenRenewer(get_env_file(), email=settings.simplenote_email),
            on_fatal=pipeline.fail
        )
        try:
            await supervisor.start(settings.simperium_token)
        except Exception as e:
            pipeline.fail(e)
    else:
        logger.info("No realtime change source registered, accepting changes on /internal/changes only")

    yield

    if supervisor is not None:
        await supervisor.stop()
        supervisor = None

    app.state.exit_code = await pipeline.shutdown()
    logger.info(f"Sync Service shut down (exit code {app.state.exit_code})")


# Create FastAPI application
app = FastAPI(
    title="Sync Service",
    description="Mirrors Simplenote notes into a Notion database in realtime",
    version="0.1.0",
    lifespan=lifespan
)
app.state.exit_code = 0

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling middleware
@app.middleware("http")
async def error_handling_middleware(request: Request, call_next):
    """Global error handling middleware."""
    try:
        response = await call_next(request)
        return response
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "detail": str(exc)
            }
        )


def _get_pipeline() -> SyncPipeline:
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync pipeline not started"
        )
    return pipeline


# Health check endpoint
@app.get("/health", status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint."""
    running = pipeline is not None and pipeline.coordinator.is_running
    realtime = supervisor is not None and supervisor.source is not None

    return {
        "status": "healthy" if running else "degraded",
        "service": "sync_service",
        "version": "0.1.0",
        "dependencies": {
            "pipeline": "up" if running else "down",
            "change_feed": "up" if realtime else "down"
        }
    }


@app.get("/", status_code=status.HTTP_200_OK)
async def root():
    """Root endpoint."""
    return {
        "service": "Sync Service",
        "version": "0.1.0",
        "status": "running"
    }


# Request/Response models
class NoteChangeRequest(BaseModel):
    """A note change, in the shape the Simplenote change feed delivers."""
    id: str
    content: str = ""
    tags: List[str] = Field(default_factory=list)
    deleted: bool = False
    modificationDate: Optional[float] = None


class NoteChangeResponse(BaseModel):
    """Response model for change ingestion."""
    note_id: str
    accepted: bool


class StatusResponse(BaseModel):
    """Response model for pipeline status."""
    state: str
    mapped_notes: int
    armed_changes: int
    queued_actions: int
    in_flight: Optional[str] = None
    processed_actions: int
    failed_actions: int


class DeadLetterResponse(BaseModel):
    """A sync action dropped after exhausting retries."""
    note_id: str
    notion_page_id: Optional[str] = None
    error_type: str
    error_message: str
    failed_at: str


@app.post("/internal/changes", response_model=NoteChangeResponse, status_code=status.HTTP_202_ACCEPTED)
async def ingest_change(request: NoteChangeRequest):
    """
    Accept a note change and schedule it for syncing.

    The change goes through the same debounce and queue as changes from the
    realtime feed. Deleted notes are acknowledged but not synced.

    Args:
        request: NoteChangeRequest with the note's current state

    Returns:
        NoteChangeResponse telling whether the change was scheduled
    """
    current = _get_pipeline()
    note = request.model_dump(exclude={"id"})
    accepted = current.on_change(request.id, note)

    return NoteChangeResponse(note_id=request.id, accepted=accepted)


@app.get("/status", response_model=StatusResponse, status_code=status.HTTP_200_OK)
async def get_status():
    """Report queue depth, mapping size and shutdown state."""
    return StatusResponse(**_get_pipeline().status())


@app.get("/internal/dead-letters", response_model=List[DeadLetterResponse], status_code=status.HTTP_200_OK)
async def get_dead_letters(note_id: Optional[str] = None, limit: int = 100):
    """
    List sync actions dropped after exhausting retries.

    Raises:
        HTTPException: If the dead-letter log is not enabled
    """
    current = _get_pipeline()
    if current.dead_letters is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Dead-letter log is disabled, set DEAD_LETTER_DATABASE_URL to enable it"
        )

    records = current.dead_letters.get_dead_letters(note_id=note_id, limit=limit)
    return [
        DeadLetterResponse(
            note_id=record.note_id,
            notion_page_id=record.notion_page_id,
            error_type=record.error_type,
            error_message=record.error_message,
            failed_at=record.failed_at.isoformat()
        )
        for record in records
    ]


def run() -> None:
    """Serve the application and exit with the shutdown's exit code."""
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
    sys.exit(app.state.exit_code)


if __name__ == "__main__":
    run()
