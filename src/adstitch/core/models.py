"""
Data model for generation jobs and compositions.

Persisted and API-facing models serialize with camelCase aliases
(``model_dump(by_alias=True, mode="json")``) and accept either spelling on
input.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


# =============================================================================
# Storyboard (orchestrator input)
# =============================================================================

class Segment(CamelModel):
    """One narrative beat of the ad; becomes one generated clip."""
    type: Literal["hook", "body", "cta"] = "body"
    description: str = ""
    start_time: float = 0.0
    end_time: float = 0.0
    visual_prompt: str = ""
    audio_notes: Optional[str] = None
    first_frame_image: Optional[str] = None
    last_frame: Optional[str] = None
    subject_reference: Optional[str] = None
    negative_prompt: Optional[str] = None
    resolution: Optional[str] = None
    seed: Optional[int] = None
    duration: Optional[float] = None

    @property
    def effective_duration(self) -> float:
        if self.duration:
            return float(self.duration)
        return max(0.0, self.end_time - self.start_time)


class StoryboardMeta(CamelModel):
    duration: float = 0.0
    aspect_ratio: Literal["16:9", "9:16", "1:1"] = "9:16"
    style: str = ""
    mode: Literal["demo", "production"] = "production"
    first_frame_image: Optional[str] = None
    subject_reference: Optional[str] = None
    model: Optional[str] = None
    voice_id: Optional[str] = None
    music_url: Optional[str] = None


class Storyboard(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    segments: List[Segment]
    meta: StoryboardMeta = Field(default_factory=StoryboardMeta)

    @model_validator(mode="after")
    def _require_segments(self) -> "Storyboard":
        if not self.segments:
            raise ValueError("storyboard must contain at least one segment")
        return self


# =============================================================================
# Generation job
# =============================================================================

class AssetStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (AssetStatus.COMPLETED, AssetStatus.FAILED)


class JobStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Asset(CamelModel):
    segment_id: int
    status: AssetStatus = AssetStatus.PENDING
    video_url: Optional[str] = None
    voice_url: Optional[str] = None
    error: Optional[str] = None
    # Free-form, camelCase keys: predictionId, retried, trimmedVideoUrl, ...
    metadata: Dict[str, Any] = Field(default_factory=dict)


def derive_job_status(assets: List[Asset]) -> JobStatus:
    """
    Aggregate job status from asset statuses.

    Any failed asset fails the job immediately, even while siblings are
    still processing.
    """
    if any(a.status == AssetStatus.FAILED for a in assets):
        return JobStatus.FAILED
    if all(a.status == AssetStatus.COMPLETED for a in assets):
        return JobStatus.COMPLETED
    return JobStatus.PROCESSING


class GenerationJob(CamelModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.PROCESSING
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    storyboard_id: str
    assets: List[Asset] = Field(default_factory=list)
    error: Optional[str] = None
    music_url: Optional[str] = None

    def asset(self, segment_id: int) -> Optional[Asset]:
        for asset in self.assets:
            if asset.segment_id == segment_id:
                return asset
        return None

    def refresh_status(self) -> JobStatus:
        self.status = derive_job_status(self.assets)
        return self.status

    @property
    def is_settled(self) -> bool:
        """True once every asset reached a terminal state."""
        return all(a.status.is_terminal for a in self.assets)


class SegmentStatusView(CamelModel):
    segment_id: int
    status: AssetStatus
    progress: int
    error: Optional[str] = None
    video_url: Optional[str] = None
    voice_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


SEGMENT_PROGRESS = {
    AssetStatus.COMPLETED: 100,
    AssetStatus.PROCESSING: 50,
    AssetStatus.PENDING: 0,
    AssetStatus.FAILED: 0,
}


class JobStatusView(CamelModel):
    """Read-only projection of a job for status polling."""
    job_id: str
    status: JobStatus
    overall_progress: int
    segments: List[SegmentStatusView]
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: GenerationJob) -> "JobStatusView":
        total = len(job.assets)
        completed = sum(1 for a in job.assets if a.status == AssetStatus.COMPLETED)
        overall = round(completed / total * 100) if total else 0
        return cls(
            job_id=job.id,
            status=job.status,
            overall_progress=overall,
            segments=[
                SegmentStatusView(
                    segment_id=a.segment_id,
                    status=a.status,
                    progress=SEGMENT_PROGRESS[a.status],
                    error=a.error,
                    video_url=a.video_url,
                    voice_url=a.voice_url,
                    metadata=dict(a.metadata),
                )
                for a in job.assets
            ],
            error=job.error,
            start_time=job.start_time,
            end_time=job.end_time,
        )


# =============================================================================
# Composition
# =============================================================================

class TimingHint(CamelModel):
    """Placement of one spoken piece, relative to the clip start."""
    start_time: float = Field(ge=0.0)
    end_time: float
    text: str = ""

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)


class Clip(CamelModel):
    """One clip on the composition timeline (times are timeline-relative)."""
    local_path: str
    voice_path: Optional[str] = None
    start_time: float = Field(ge=0.0)
    end_time: float
    type: str = "body"
    timing_hints: List[TimingHint] = Field(default_factory=list)

    @model_validator(mode="after")
    def _positive_duration(self) -> "Clip":
        if self.end_time <= self.start_time:
            raise ValueError(
                f"clip end_time ({self.end_time}) must be greater than start_time ({self.start_time})"
            )
        return self

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


class StitchAdjustment(CamelModel):
    """Immutable record of the stitch decision made for one clip pair."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    clip_index: int
    original_end_time: float
    adjusted_end_time: float
    trimmed_seconds: float = Field(ge=0.0)
    similarity: float = Field(ge=0.0, le=1.0)
    transition_name: str


class CompositionOptions(CamelModel):
    # Transitions are accepted but the composer always hard-cuts.
    transition: Literal["fade", "dissolve", "wipe", "none"] = "none"
    music_volume: int = Field(default=30, ge=0, le=100)
    output_path: str
    background_music_path: Optional[str] = None
    output_width: int = Field(default=1080, gt=0)
    output_height: int = Field(default=1920, gt=0)
