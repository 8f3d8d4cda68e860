"""
AdStitch - Web API Server

HTTP surface for the composition engine:
- Submit a storyboard for segment generation and poll its job
- Re-cut a generated segment for continuity with the next one
- Compose local clips (optionally with smart stitching) into one video

Architecture:
  Client → FastAPI → SegmentJobOrchestrator / ContinuityRecutService → JobRepository
                   → composer / stitching → ffmpeg
"""

import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field
import uvicorn

from . import __version__
from .composer import compose_video, total_duration
from .config import get_settings
from .continuity import ContinuityRecutService
from .core.job_store import JobRepository, create_job_repository
from .core.models import CamelModel, Clip, CompositionOptions, Storyboard
from .exceptions import (
    FFmpegError,
    JobNotFoundError,
    PreconditionError,
    RequestValidationError,
    SegmentNotFoundError,
    StorageError,
)
from .ffmpeg_utils import stderr_tail
from .logger import logger
from .orchestrator import SegmentJobOrchestrator
from .providers.elevenlabs import ElevenLabsSpeechProvider
from .providers.openai_vision import OpenAIFrameClassifier, OpenAIFrameJudge
from .providers.replicate import ReplicateVideoProvider
from .stitching import compose_with_smart_stitching
from .storage import LocalStorageSink, StorageSink

COMPOSITION_FOLDER = "compositions"


# ============================================================================
# SERVICES
# ============================================================================

@dataclass
class Services:
    repository: JobRepository
    storage: StorageSink
    orchestrator: SegmentJobOrchestrator
    continuity: ContinuityRecutService


def build_services() -> Services:
    """Wire the engine from settings: configured job store, local storage, HTTP providers."""
    settings = get_settings()
    settings.paths.ensure_directories()
    providers = settings.providers

    repository = create_job_repository()
    storage = LocalStorageSink(public_base_url=os.environ.get("STORAGE_PUBLIC_URL") or None)
    if not providers.has_video_backend:
        logger.warning("[API] REPLICATE_API_TOKEN not set, video generation will fail")

    orchestrator = SegmentJobOrchestrator(
        repository=repository,
        video_provider=ReplicateVideoProvider(),
        storage=storage,
        speech_provider=ElevenLabsSpeechProvider() if providers.has_speech_backend else None,
        classifier=OpenAIFrameClassifier() if providers.has_vision_backend else None,
    )
    continuity = ContinuityRecutService(repository, storage, OpenAIFrameJudge())
    return Services(repository, storage, orchestrator, continuity)


_services: Optional[Services] = None


def get_services() -> Services:
    """FastAPI dependency; tests override it via ``app.dependency_overrides``."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class GenerateAssetsRequest(CamelModel):
    storyboard: Storyboard


class OptimizeContinuityRequest(CamelModel):
    job_id: str


class ComposeOptionsRequest(CamelModel):
    transition: Literal["fade", "dissolve", "wipe", "none"] = "none"
    music_volume: int = Field(default=30, ge=0, le=100)
    background_music_path: Optional[str] = None
    output_width: int = Field(default=1080, gt=0)
    output_height: int = Field(default=1920, gt=0)
    output_path: Optional[str] = None


class ComposeVideoRequest(CamelModel):
    clips: List[Clip]
    options: ComposeOptionsRequest = Field(default_factory=ComposeOptionsRequest)
    smart_stitch: bool = False


# ============================================================================
# APP
# ============================================================================

app = FastAPI(
    title="AdStitch API",
    description="Segment generation, continuity re-cuts and smart-stitched composition for short video ads",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PreconditionError)
async def precondition_handler(request, exc: PreconditionError):
    status = 404 if isinstance(exc, (JobNotFoundError, SegmentNotFoundError)) else 400
    return JSONResponse(status_code=status, content={"error": str(exc), "condition": exc.condition})


@app.exception_handler(RequestValidationError)
async def validation_handler(request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(FFmpegError)
async def ffmpeg_handler(request, exc: FFmpegError):
    logger.error(f"[API] {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "Video composition failed", "details": stderr_tail(exc.stderr or str(exc))},
    )


# ============================================================================
# GENERATION JOBS
# ============================================================================

@app.post("/api/generate-assets")
def generate_assets(body: GenerateAssetsRequest, services: Services = Depends(get_services)):
    """Start generating every segment of a storyboard; poll the returned job id."""
    job = services.orchestrator.submit(body.storyboard)
    return {"jobId": job.id, "status": job.status.value}


@app.get("/api/generation-status/{job_id}")
def generation_status(job_id: str, services: Services = Depends(get_services)):
    return services.orchestrator.get_status(job_id).to_json_dict()


@app.post("/api/optimize-continuity/{segment_id}")
def optimize_continuity(
    segment_id: int, body: OptimizeContinuityRequest, services: Services = Depends(get_services)
):
    """Trim a generated segment at the frame that best matches the next segment's first frame."""
    result = services.continuity.optimize(body.job_id, segment_id)
    return result.to_json_dict()


# ============================================================================
# COMPOSITION
# ============================================================================

@app.post("/api/compose-video")
def compose(body: ComposeVideoRequest, services: Services = Depends(get_services)):
    """
    Compose local clips into one video.

    With ``smartStitch`` every transition is first moved to the end frame
    that best matches the next clip's first frame.
    """
    video_id = uuid.uuid4().hex[:12]
    output_path = body.options.output_path or str(
        get_settings().paths.output_dir / f"composition_{video_id}.mp4"
    )
    options = CompositionOptions(
        output_path=output_path,
        **body.options.model_dump(exclude={"output_path"}),
    )

    if body.smart_stitch:
        output, adjustments = compose_with_smart_stitching(body.clips, options)
    else:
        output, adjustments = compose_video(body.clips, options), []

    duration = total_duration(body.clips) - sum(a.trimmed_seconds for a in adjustments)
    try:
        video_url = services.storage.put(Path(output).read_bytes(), COMPOSITION_FOLDER, "mp4")
    except (StorageError, OSError) as e:
        logger.warning(f"[API] Could not store composition, returning local path: {e}")
        video_url = Path(output).resolve().as_uri()

    return {
        "videoUrl": video_url,
        "videoId": video_id,
        "duration": round(duration, 3),
        "adjustments": [a.to_json_dict() for a in adjustments],
    }


# ============================================================================
# HEALTH CHECK
# ============================================================================

@app.get("/health")
async def health_check():
    settings = get_settings()
    return {
        "status": "healthy",
        "version": __version__,
        "jobStore": settings.store.backend,
        "ffmpeg": shutil.which(settings.encoding.ffmpeg_bin) is not None,
        "providers": {
            "video": settings.providers.has_video_backend,
            "speech": settings.providers.has_speech_backend,
            "vision": settings.providers.has_vision_backend,
        },
    }


def run(host: str = "0.0.0.0", port: Optional[int] = None, reload: bool = False) -> None:
    """Development server."""
    port = port or int(os.environ.get("API_PORT", "8000"))
    uvicorn.run("adstitch.api:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    run(reload=True)
