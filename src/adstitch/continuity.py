"""
Continuity Re-cut Service

Re-cuts an already generated segment so its last frame flows into the next
segment's first frame. A multimodal judge picks the best frame from the
final second of the clip; the clip is trimmed there and stored as a new
asset URL, while the original URL is preserved in the asset metadata.

Preconditions are checked up front, in order, before any download:
job, segment, successor, current video, next first frame.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import get_settings
from .core.job_store import JobRepository
from .core.models import Asset, CamelModel, GenerationJob, Storyboard
from .core.temp_files import TempWorkspace
from .cost_tracking import COST_CONTINUITY_RECUT, CostTracker, get_cost_tracker
from .exceptions import (
    AnalysisError,
    JobNotFoundError,
    MissingFirstFrameError,
    MissingSegmentVideoError,
    NoSuccessorSegmentError,
    ProviderError,
    SegmentNotFoundError,
)
from .frames import extract_first_frame, extract_frames_from_end, trim_video_at_timestamp
from .logger import job_context, logger
from .providers.base import FrameJudge
from .storage import StorageSink, fetch_media
from .video_metadata import get_duration

TRIMMED_VIDEO_FOLDER = "ai_videos"


class ContinuityResult(CamelModel):
    segment_id: int
    applied: bool
    similarity_score: float = 0.0
    trim_timestamp: Optional[float] = None
    selected_frame_index: Optional[int] = None
    frame_count: int = 0
    differences: List[str] = []
    reasoning: str = ""
    trimmed_video_url: Optional[str] = None
    original_video_url: Optional[str] = None
    error: Optional[str] = None


class _RecutPlan:
    """Validated inputs for one re-cut."""

    def __init__(self, job: GenerationJob, asset: Asset, video_url: str, target_image: Optional[str], target_video: Optional[str]):
        self.job = job
        self.asset = asset
        self.video_url = video_url
        self.target_image = target_image
        self.target_video = target_video


def selected_frame_timestamp(duration: float, window: float, frame_count: int, index: int) -> float:
    """Absolute time of frame ``index`` among ``frame_count`` frames spanning the last ``window`` seconds."""
    window = min(window, duration)
    return duration - window + index * (window / frame_count)


class ContinuityRecutService:
    def __init__(
        self,
        repository: JobRepository,
        storage: StorageSink,
        judge: FrameJudge,
        window: Optional[float] = None,
        duration_probe: Callable[[str], float] = None,
        cost_tracker: Optional[CostTracker] = None,
    ):
        self.repository = repository
        self.storage = storage
        self.judge = judge
        self.window = window if window is not None else get_settings().stitch.recut_window
        self.duration_probe = duration_probe or get_duration
        self.cost_tracker = cost_tracker or get_cost_tracker()

    # ------------------------------------------------------------------
    # Preconditions
    # ------------------------------------------------------------------
    def _plan(self, job_id: str, segment_index: int) -> _RecutPlan:
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        storyboard: Optional[Storyboard] = self.repository.get_storyboard(job.storyboard_id)
        segments = storyboard.segments if storyboard is not None else []
        asset = job.asset(segment_index)
        # Demo jobs generate only some storyboard segments; the storyboard defines what exists
        if segment_index < 0 or (segment_index >= len(segments) and asset is None):
            raise SegmentNotFoundError(f"Segment {segment_index} not found in job {job_id}")

        next_asset = job.asset(segment_index + 1)
        next_segment = segments[segment_index + 1] if segment_index + 1 < len(segments) else None
        if next_asset is None and next_segment is None:
            raise NoSuccessorSegmentError(f"Segment {segment_index} is the last segment of job {job_id}")

        if asset is None or not asset.video_url:
            raise MissingSegmentVideoError(f"Segment {segment_index} has no generated video yet")

        target_image = next_segment.first_frame_image if next_segment else None
        target_video = next_asset.video_url if next_asset else None
        if not target_image and not target_video:
            raise MissingFirstFrameError(
                f"Segment {segment_index + 1} has neither a first-frame image nor a video"
            )

        video_url = asset.metadata.get("originalVideoUrl") or asset.video_url
        return _RecutPlan(job, asset, video_url, target_image, target_video)

    # ------------------------------------------------------------------
    # Re-cut
    # ------------------------------------------------------------------
    def optimize(self, job_id: str, segment_index: int) -> ContinuityResult:
        """
        Trim segment ``segment_index`` of ``job_id`` at its best continuity frame.

        Raises:
            PreconditionError: one of the five named subclasses
            StorageError, FFmpegError, FrameExtractionError: media handling failed
        """
        with job_context(job_id):
            return self._optimize(job_id, segment_index)

    def _optimize(self, job_id: str, segment_index: int) -> ContinuityResult:
        plan = self._plan(job_id, segment_index)
        tag = f"[Continuity {job_id}:{segment_index}]"

        with TempWorkspace("recut") as ws:
            if plan.target_image:
                target = str(fetch_media(plan.target_image, ws.subdir("target")))
                logger.info(f"{tag} Target frame from storyboard first-frame image")
            else:
                next_video = self.storage.get(plan.target_video, ws.subdir("next"))
                target = extract_first_frame(next_video, ws.path("target.jpg"))
                logger.info(f"{tag} Target frame extracted from next segment video")

            local_video = self.storage.get(plan.video_url, ws.subdir("current"))
            duration = self.duration_probe(str(local_video))
            frames = extract_frames_from_end(local_video, duration, ws.subdir("frames"), self.window)
            logger.info(f"{tag} {len(frames)} candidate frames from last {self.window:.1f}s of {duration:.2f}s")

            try:
                judgment = self.judge.select_best_frame(frames, target)
                if not 0 <= judgment.selected_index < len(frames):
                    raise AnalysisError(f"judge picked frame {judgment.selected_index} of {len(frames)}")
            except (AnalysisError, ProviderError) as e:
                logger.warning(f"{tag} Judge failed, keeping original cut: {e}")
                return ContinuityResult(
                    segment_id=segment_index,
                    applied=False,
                    frame_count=len(frames),
                    original_video_url=plan.video_url,
                    error=str(e),
                )

            trim_ts = selected_frame_timestamp(duration, self.window, len(frames), judgment.selected_index)
            if trim_ts <= 0:
                logger.warning(f"{tag} Selected frame is at the clip start, keeping original cut")
                return ContinuityResult(
                    segment_id=segment_index,
                    applied=False,
                    similarity_score=judgment.similarity_score,
                    selected_frame_index=judgment.selected_index,
                    frame_count=len(frames),
                    original_video_url=plan.video_url,
                    error="selected frame leaves no content",
                )

            trimmed = trim_video_at_timestamp(local_video, trim_ts, ws.path("trimmed.mp4"))
            trimmed_url = self.storage.put(Path(trimmed).read_bytes(), TRIMMED_VIDEO_FOLDER, "mp4")

        self._record(job_id, segment_index, plan.video_url, trimmed_url, trim_ts, judgment.similarity_score)
        self.cost_tracker.track("optimize-continuity", COST_CONTINUITY_RECUT, {
            "jobId": job_id,
            "segmentId": segment_index,
            "frameCount": len(frames),
            "similarityScore": judgment.similarity_score,
            "trimTimestamp": trim_ts,
        })
        logger.info(
            f"{tag} Trimmed at {trim_ts:.3f}s (frame {judgment.selected_index}, "
            f"score {judgment.similarity_score:.2f})"
        )
        return ContinuityResult(
            segment_id=segment_index,
            applied=True,
            similarity_score=judgment.similarity_score,
            trim_timestamp=trim_ts,
            selected_frame_index=judgment.selected_index,
            frame_count=len(frames),
            differences=list(judgment.differences),
            reasoning=judgment.reasoning,
            trimmed_video_url=trimmed_url,
            original_video_url=plan.video_url,
        )

    def _record(self, job_id: str, segment_index: int, original_url: str, trimmed_url: str, trim_ts: float, score: float) -> None:
        def mutate(job: GenerationJob) -> None:
            asset = job.asset(segment_index)
            if asset is None:
                raise SegmentNotFoundError(f"Segment {segment_index} disappeared from job {job_id}")
            metadata: Dict[str, Any] = dict(asset.metadata)
            metadata.update({
                "trimmedVideoUrl": trimmed_url,
                "trimTimestamp": trim_ts,
                "continuityScore": score,
                "originalVideoUrl": original_url,
            })
            asset.metadata = metadata

        self.repository.update(job_id, mutate)
