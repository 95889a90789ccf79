"""HTTP surface: health check, one-shot processing and inbox polling."""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile

from minutes_pipeline.config import build_pipeline, get_config
from minutes_pipeline.domain.models import MeetingInfo, RecordingUnit
from minutes_pipeline.errors import DispatchCancelled, ErrorKind, PipelineError, describe_error
from minutes_pipeline.models import HealthResponse

logger = logging.getLogger(__name__)


def create_app(pipeline_factory: Optional[Callable] = None) -> FastAPI:
    """Build the app. ``pipeline_factory`` returns (process_meeting, process_recordings)."""
    cfg = get_config()
    factory = pipeline_factory or (lambda: build_pipeline(cfg))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        process_meeting, process_recordings = factory()
        app.state.process_meeting = process_meeting
        app.state.process_recordings = process_recordings
        yield
        process_recordings.request_shutdown()

    app = FastAPI(title="Meeting Minutes Pipeline", lifespan=lifespan)

    @app.get("/health", response_model=HealthResponse)
    async def health():
        process_meeting = getattr(app.state, "process_meeting", None)
        return HealthResponse(
            status="ok",
            model=process_meeting.model_name if process_meeting else None,
            config=cfg.as_dict(),
        )

    @app.post("/v1/meetings/process")
    async def process_meeting(
        file: UploadFile = File(..., description="Meeting audio recording"),
        topic: str = Form("", description="Meeting topic"),
        start_time: str = Form("", description="Start time, ISO 8601"),
        duration_minutes: Optional[float] = Form(None, description="Recording length in minutes"),
        host_name: str = Form("", description="Meeting host"),
    ):
        audio = await file.read()
        unit = RecordingUnit(
            audio_bytes=audio,
            mime_type=file.content_type if file.content_type and file.content_type.startswith("audio/") else None,
            meeting=MeetingInfo(
                topic=topic, start_time=start_time,
                duration_minutes=duration_minutes, host_name=host_name,
            ),
            recording_id=file.filename or "",
        )
        logger.info(f"Processing upload {file.filename} ({len(audio)} bytes)")
        try:
            result = await app.state.process_meeting.execute(unit)
        except PipelineError as e:
            status = 422 if e.kind == ErrorKind.AUDIO_INSUFFICIENT else 502
            raise HTTPException(status_code=status, detail={
                "kind": e.kind.value,
                "message": describe_error(e.kind).message,
                "detail": e.message,
                "attempts": e.attempts,
            })
        except DispatchCancelled:
            raise HTTPException(status_code=503, detail="Server is shutting down")
        return result.to_document()

    @app.post("/v1/recordings/poll")
    async def poll_recordings():
        outcomes = await app.state.process_recordings.run_once()
        return {
            "processed": sum(1 for o in outcomes if o.succeeded),
            "failed": sum(1 for o in outcomes if not o.succeeded),
            "recordings": [
                {"id": o.recording_id, "succeeded": o.succeeded, "error": o.error} for o in outcomes
            ],
        }

    return app
