"""
Segment Job Orchestrator

Turns a storyboard into a generation job: one video prediction per segment,
launched concurrently and polled until terminal, then a second concurrent
pass that synthesizes narration for the completed segments.

Job lifecycle:
    processing -> completed   every segment completed
    processing -> failed      any segment failed (visible immediately)

Each segment's outcome is written into the job through
``JobRepository.update`` as soon as it resolves, so status polls see
partial progress.
"""

import contextvars
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .config import get_settings
from .core.job_store import JobRepository
from .core.models import (
    Asset,
    AssetStatus,
    GenerationJob,
    JobStatus,
    JobStatusView,
    Segment,
    Storyboard,
    utcnow,
)
from .cost_tracking import COST_VIDEO_GENERATION, COST_VOICE_SYNTHESIS, CostTracker, get_cost_tracker
from .exceptions import (
    JobNotFoundError,
    ModerationFlaggedError,
    ProviderError,
    ProviderResponseError,
    ProviderTerminalError,
    ProviderTransientError,
    StorageError,
)
from .logger import (
    configure_file_logging,
    job_context,
    log_error,
    log_phase,
    log_success,
    logger,
    remove_file_logging,
)
from .narration import extract_narration_text
from .prompts import build_negative_prompt, family_safe_prompt, sanitize_prompt
from .providers.base import (
    FrameClassifier,
    PredictionFailed,
    PredictionState,
    SpeechProvider,
    VideoProvider,
    VideoRequest,
)
from .providers.responses import is_moderation_error
from .storage import StorageSink, download_bytes

VIDEO_FOLDER = "ai_videos"
VOICE_FOLDER = "ai_voice"


@dataclass
class SegmentOutcome:
    """Result of one segment's video unit, applied to the job in one update."""
    segment_id: int
    status: AssetStatus
    video_url: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def apply(self, job: GenerationJob) -> None:
        asset = job.asset(self.segment_id)
        if asset is None:
            return
        asset.status = self.status
        asset.video_url = self.video_url
        asset.error = self.error
        asset.metadata = {**asset.metadata, **self.metadata}


class _ModerationRejected(Exception):
    def __init__(self, message: str, prediction_id: Optional[str] = None):
        super().__init__(message)
        self.prediction_id = prediction_id


class SegmentJobOrchestrator:
    """
    Fan-out/fan-in driver for generation jobs.

    Provider calls are synchronous; concurrency comes from a thread pool
    with one worker per segment unless ``max_concurrent_segments`` caps it.
    Transient provider errors fail the segment; they are not retried here.
    """

    def __init__(
        self,
        repository: JobRepository,
        video_provider: VideoProvider,
        storage: StorageSink,
        speech_provider: Optional[SpeechProvider] = None,
        classifier: Optional[FrameClassifier] = None,
        cost_tracker: Optional[CostTracker] = None,
        poll_interval: Optional[float] = None,
        max_concurrent_segments: Optional[int] = None,
        max_poll_attempts: Optional[int] = None,
        job_log_files: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        cfg = get_settings().orchestrator
        self.repository = repository
        self.video_provider = video_provider
        self.storage = storage
        self.speech_provider = speech_provider
        self.classifier = classifier
        self.cost_tracker = cost_tracker or get_cost_tracker()
        self.poll_interval = cfg.poll_interval if poll_interval is None else poll_interval
        self.max_concurrent_segments = max_concurrent_segments or cfg.max_concurrent_segments
        self.max_poll_attempts = max_poll_attempts or cfg.max_poll_attempts
        self.demo_mode = cfg.demo_mode
        self.job_log_files = cfg.job_log_files if job_log_files is None else job_log_files
        self._sleep = sleep
        self._threads: Dict[str, threading.Thread] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def submit(self, storyboard: Storyboard, wait: bool = False) -> GenerationJob:
        """
        Create a job for ``storyboard`` and start generating.

        With ``wait=False`` the job runs on a background thread and the
        returned snapshot is still ``processing``; poll ``get_status``.
        """
        segments = self.select_segments(storyboard)
        self.repository.save_storyboard(storyboard)
        job = self.repository.create(GenerationJob(
            storyboard_id=storyboard.id,
            assets=[Asset(segment_id=i, status=AssetStatus.PROCESSING) for i, _ in segments],
            music_url=storyboard.meta.music_url,
        ))
        logger.info(
            f"[Orchestrator] Job {job.id}: {len(segments)}/{len(storyboard.segments)} segment(s), "
            f"aspect {storyboard.meta.aspect_ratio}"
        )

        if wait:
            return self.run_job(job.id, storyboard)

        thread = threading.Thread(
            target=self._run_in_background, args=(job.id, storyboard), name=f"job-{job.id[:8]}", daemon=True
        )
        self._threads[job.id] = thread
        thread.start()
        return job

    def wait(self, job_id: str, timeout: Optional[float] = None) -> GenerationJob:
        """Block until a background job finishes (CLI and tests)."""
        thread = self._threads.get(job_id)
        if thread is not None:
            thread.join(timeout)
        return self._require(job_id)

    def get_status(self, job_id: str) -> JobStatusView:
        return JobStatusView.from_job(self._require(job_id))

    def select_segments(self, storyboard: Storyboard) -> List[tuple]:
        """(index, segment) pairs to generate; demo mode keeps only the first."""
        indexed = list(enumerate(storyboard.segments))
        if storyboard.meta.mode == "demo" or self.demo_mode:
            return indexed[:1]
        return indexed

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------
    def _run_in_background(self, job_id: str, storyboard: Storyboard) -> None:
        try:
            self.run_job(job_id, storyboard)
        except Exception as e:
            # Last resort so a crashed worker never leaves the job processing forever
            logger.error(f"[Orchestrator] Job {job_id} crashed: {e}", exc_info=True)
            self.repository.update(job_id, lambda job: self._mark_crashed(job, str(e)))
        finally:
            self._threads.pop(job_id, None)

    @staticmethod
    def _mark_crashed(job: GenerationJob, message: str) -> None:
        for asset in job.assets:
            if not asset.status.is_terminal:
                asset.status = AssetStatus.FAILED
                asset.error = message
                asset.metadata = {**asset.metadata, "errorKind": "unexpected"}
        job.error = message
        job.end_time = utcnow()

    def run_job(self, job_id: str, storyboard: Storyboard) -> GenerationJob:
        """Run both phases for an existing job and return the final snapshot."""
        log_handler = configure_file_logging(get_settings().paths.log_dir, job_id) if self.job_log_files else None
        try:
            with job_context(job_id):
                return self._run_phases(job_id, storyboard)
        finally:
            if log_handler is not None:
                remove_file_logging(log_handler)

    def _run_phases(self, job_id: str, storyboard: Storyboard) -> GenerationJob:
        segments = self.select_segments(storyboard)
        log_phase(f"Generating {len(segments)} segment(s) for job {job_id}")

        self._fan_out(
            [(self._generate_segment, (job_id, index, segment, storyboard)) for index, segment in segments],
            label="video",
        )

        job = self._require(job_id)
        voiced = []
        for index, segment in segments:
            asset = job.asset(index)
            if asset is None or asset.status != AssetStatus.COMPLETED:
                continue
            text = extract_narration_text(segment.audio_notes)
            if text:
                voiced.append((index, text))
        if voiced and self.speech_provider is not None:
            voice = storyboard.meta.voice_id or get_settings().providers.default_voice_id
            self._fan_out(
                [(self._synthesize_voice, (job_id, index, text, voice)) for index, text in voiced],
                label="voice",
            )
        elif voiced:
            logger.warning(f"[Orchestrator] {len(voiced)} segment(s) have narration but no speech provider is set")

        job = self.repository.update(job_id, self._finalize)
        if job.status == JobStatus.COMPLETED:
            log_success(f"Job {job_id} completed ({len(job.assets)} segment(s))")
        else:
            log_error(f"Job {job_id} failed: {job.error}")
        return job

    def _fan_out(self, tasks: List[tuple], label: str) -> None:
        if not tasks:
            return
        workers = len(tasks)
        if self.max_concurrent_segments:
            workers = min(workers, self.max_concurrent_segments)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=label) as executor:
            # Each task runs in its own copy of the job logging context
            futures = [executor.submit(contextvars.copy_context().run, fn, *args) for fn, args in tasks]
            for future in as_completed(futures):
                # Units record their own failures; anything raised here is a bug
                future.result()

    @staticmethod
    def _finalize(job: GenerationJob) -> None:
        failed = [a for a in job.assets if a.status == AssetStatus.FAILED]
        if failed:
            details = "; ".join(f"{a.segment_id}: {a.error}" for a in failed)
            job.error = f"Segment(s) {', '.join(str(a.segment_id) for a in failed)} failed: {details}"
        job.end_time = utcnow()

    def _require(self, job_id: str) -> GenerationJob:
        job = self.repository.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    # ------------------------------------------------------------------
    # Video unit
    # ------------------------------------------------------------------
    def build_request(self, segment: Segment, storyboard: Storyboard) -> VideoRequest:
        meta = storyboard.meta
        request = VideoRequest(
            prompt=sanitize_prompt(segment.visual_prompt or segment.description),
            duration=segment.effective_duration,
            aspect_ratio=meta.aspect_ratio,
            first_frame_image=segment.first_frame_image or meta.first_frame_image,
            last_frame_image=segment.last_frame,
            subject_reference=segment.subject_reference or meta.subject_reference,
            resolution=segment.resolution,
            seed=segment.seed,
            model=meta.model,
        )
        request.negative_prompt = build_negative_prompt(
            segment.negative_prompt, child_safety=self._shows_minor(request.input_frames)
        )
        return request

    def _shows_minor(self, frames: List[str]) -> bool:
        if self.classifier is None:
            return False
        return any(self.classifier.contains_minor(frame) for frame in frames)

    def _generate_segment(self, job_id: str, index: int, segment: Segment, storyboard: Storyboard) -> None:
        tag = f"[Orchestrator {job_id[:8]}:{index}]"
        started = utcnow().isoformat()
        metadata: Dict[str, Any] = {"startedAt": started, "retried": False}
        try:
            request = self.build_request(segment, storyboard)
            try:
                prediction_id = self._run_prediction(request, tag)
            except _ModerationRejected as first:
                logger.warning(f"{tag} Moderation flag ({first}), retrying once with a family-safe prompt")
                metadata["retried"] = True
                metadata["firstPredictionId"] = first.prediction_id
                request.prompt = family_safe_prompt(request.prompt)
                prediction_id = self._run_prediction(request, tag)
            metadata["predictionId"] = prediction_id

            provider_url = self.video_provider.fetch_result(prediction_id)
            video_url = self._persist(provider_url, tag, metadata)
            metadata["completedAt"] = utcnow().isoformat()
            outcome = SegmentOutcome(index, AssetStatus.COMPLETED, video_url=video_url, metadata=metadata)
            self.cost_tracker.track("video-generation", COST_VIDEO_GENERATION, {
                "jobId": job_id,
                "segmentId": index,
                "duration": request.duration,
                "retried": metadata["retried"],
            })
            logger.info(f"{tag} Segment completed")
        except _ModerationRejected as e:
            outcome = self._failure(index, f"Content flagged by moderation: {e}", "moderation", metadata)
            if e.prediction_id:
                outcome.metadata["predictionId"] = e.prediction_id
        except ProviderTransientError as e:
            outcome = self._failure(index, str(e), "provider_transient", metadata)
        except ProviderResponseError as e:
            outcome = self._failure(index, str(e), "provider_response", metadata)
        except ProviderTerminalError as e:
            outcome = self._failure(index, str(e), "provider_terminal", metadata)
        except ProviderError as e:
            outcome = self._failure(index, str(e), "provider_terminal", metadata)
        except Exception as e:
            logger.error(f"{tag} Unexpected error: {e}", exc_info=True)
            outcome = self._failure(index, str(e), "unexpected", metadata)

        if outcome.status == AssetStatus.FAILED:
            logger.error(f"{tag} Segment failed ({outcome.metadata['errorKind']}): {outcome.error}")
        self.repository.update(job_id, outcome.apply)

    @staticmethod
    def _failure(index: int, message: str, kind: str, metadata: Dict[str, Any]) -> SegmentOutcome:
        return SegmentOutcome(
            index,
            AssetStatus.FAILED,
            error=message,
            metadata={**metadata, "errorKind": kind, "completedAt": utcnow().isoformat()},
        )

    def _run_prediction(self, request: VideoRequest, tag: str) -> str:
        """
        Submit and poll one prediction until it succeeds.

        Raises:
            _ModerationRejected: the provider flagged the request
            ProviderError: any other provider failure
        """
        try:
            prediction_id = self.video_provider.create(request)
        except ModerationFlaggedError as e:
            raise _ModerationRejected(str(e), e.prediction_id) from e
        logger.info(f"{tag} Prediction {prediction_id} submitted ({request.duration:.1f}s)")

        state = self._poll_until_terminal(prediction_id)
        if isinstance(state, PredictionFailed):
            if is_moderation_error(state.error, state.error_code):
                raise _ModerationRejected(state.error, prediction_id)
            raise ProviderTerminalError(
                f"Prediction {state.status}: {state.error}",
                provider=self.video_provider.name,
                prediction_id=prediction_id,
            )
        return prediction_id

    def _poll_until_terminal(self, prediction_id: str) -> PredictionState:
        for _ in range(self.max_poll_attempts):
            try:
                state = self.video_provider.poll(prediction_id)
            except ModerationFlaggedError as e:
                raise _ModerationRejected(str(e), prediction_id) from e
            if state.is_terminal:
                return state
            self._sleep(self.poll_interval)
        raise ProviderTransientError(
            f"Prediction {prediction_id} still running after {self.max_poll_attempts} polls",
            provider=self.video_provider.name,
            prediction_id=prediction_id,
        )

    def _persist(self, provider_url: str, tag: str, metadata: Dict[str, Any]) -> str:
        """Durable URL for the generated media, or the provider URL if storage fails."""
        metadata["providerUrl"] = provider_url
        try:
            return self.storage.put(download_bytes(provider_url), VIDEO_FOLDER, "mp4")
        except StorageError as e:
            logger.warning(f"{tag} Persisting video failed, keeping provider URL: {e}")
            metadata["persistenceFallback"] = True
            return provider_url

    # ------------------------------------------------------------------
    # Voice unit
    # ------------------------------------------------------------------
    def _synthesize_voice(self, job_id: str, index: int, text: str, voice: str) -> None:
        tag = f"[Orchestrator {job_id[:8]}:{index}]"
        try:
            audio = self.speech_provider.synthesize(text, voice)
            voice_url = self.storage.put(audio, VOICE_FOLDER, "mp3")
        except (ProviderError, StorageError) as e:
            logger.warning(f"{tag} Voice synthesis failed, segment keeps its video only: {e}")
            return

        def attach(job: GenerationJob) -> None:
            asset = job.asset(index)
            if asset is not None:
                asset.voice_url = voice_url
                asset.metadata = {**asset.metadata, "narration": text}

        self.repository.update(job_id, attach)
        self.cost_tracker.track("voice-synthesis", COST_VOICE_SYNTHESIS, {
            "jobId": job_id,
            "segmentId": index,
            "characters": len(text),
        })
        logger.info(f"{tag} Voice attached ({len(text.split())} words)")
