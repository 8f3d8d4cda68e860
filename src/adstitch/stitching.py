"""
Stitch-Point Optimizer

For every adjacent clip pair, samples frames from the tail of the earlier
clip, scores each against the first frame of the next clip, and moves the
earlier clip's end to the best-matching sample. A failed pair keeps its
original timing; it never aborts the composition.
"""

import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from .composer import compose_video, validate_timeline
from .config import get_settings
from .core.models import Clip, CompositionOptions, StitchAdjustment
from .core.temp_files import TempWorkspace
from .exceptions import AdStitchError
from .frame_similarity import FrameSimilarityScorer, clamp01
from .frames import extract_first_frame, extract_frame_at
from .logger import logger
from .video_metadata import get_duration

# Never sample closer to the start of the clip than this (seconds)
MIN_KEEP_SECONDS = 0.1


@dataclass(frozen=True)
class CutCandidate:
    timestamp: float
    similarity: float
    frame_index: int


def sample_timestamps(duration: float, window: float, count: int, safety_margin: float) -> List[float]:
    """
    Evenly spaced sample times covering the last ``window`` seconds.

    The last sample sits ``safety_margin`` before the literal end, so every
    timestamp is strictly inside the clip and strictly positive.
    """
    if duration <= 0:
        raise ValueError(f"duration must be positive, got {duration}")
    if count < 1:
        raise ValueError(f"sample count must be >= 1, got {count}")

    margin = min(safety_margin, duration / 2)
    end = duration - margin
    start = min(max(duration - window, min(MIN_KEEP_SECONDS, end)), end)
    if count == 1:
        return [end]
    step = (end - start) / (count - 1)
    return [start + step * i for i in range(count)]


def find_best_cut(
    preceding_clip_path: str,
    preceding_duration: float,
    next_clip_first_frame: str,
    sample_window_seconds: float = 1.0,
    sample_count: int = 30,
    scorer: Optional[FrameSimilarityScorer] = None,
    safety_margin: Optional[float] = None,
) -> CutCandidate:
    """
    Best cut point in the tail of ``preceding_clip_path``.

    Always returns a candidate, however low its similarity. Ties resolve to
    the later timestamp (less material removed).
    """
    scorer = scorer or FrameSimilarityScorer()
    if safety_margin is None:
        safety_margin = get_settings().stitch.safety_margin
    timestamps = sample_timestamps(preceding_duration, sample_window_seconds, sample_count, safety_margin)

    best: Optional[CutCandidate] = None
    with TempWorkspace("stitch_samples") as ws:
        for index, ts in enumerate(timestamps):
            frame_path = ws.path(f"sample_{index:03d}.jpg")
            try:
                extract_frame_at(preceding_clip_path, ts, frame_path)
                similarity = clamp01(scorer.score(str(frame_path), next_clip_first_frame))
            except AdStitchError as e:
                logger.debug(f"[Stitch] sample {index} @ {ts:.3f}s skipped: {e}")
                similarity = 0.0
            if best is None or similarity >= best.similarity:
                best = CutCandidate(timestamp=ts, similarity=similarity, frame_index=index)

    return best


class StitchPointOptimizer:
    """Runs find_best_cut for every adjacent pair and re-lays the timeline."""

    def __init__(
        self,
        scorer: Optional[FrameSimilarityScorer] = None,
        sample_window: Optional[float] = None,
        sample_count: Optional[int] = None,
        duration_probe: Callable[[str], float] = None,
    ):
        cfg = get_settings().stitch
        self.scorer = scorer or FrameSimilarityScorer()
        self.sample_window = sample_window if sample_window is not None else cfg.sample_window
        self.sample_count = sample_count if sample_count is not None else cfg.sample_count
        self.duration_probe = duration_probe or get_duration

    def _analyze_pair(self, clip: Clip, next_clip: Clip) -> Tuple[CutCandidate, float]:
        source_duration = self.duration_probe(clip.local_path)
        with TempWorkspace("stitch_pair") as ws:
            first_frame = extract_first_frame(next_clip.local_path, ws.path("next_first.jpg"))
            candidate = find_best_cut(
                clip.local_path,
                source_duration,
                first_frame,
                sample_window_seconds=self.sample_window,
                sample_count=self.sample_count,
                scorer=self.scorer,
            )
        return candidate, source_duration

    def optimize(self, clips: Sequence[Clip]) -> Tuple[List[Clip], List[StitchAdjustment]]:
        """
        Returns:
            (re-laid clips, one StitchAdjustment per adjacent pair)
        """
        validate_timeline(clips)
        durations = [c.duration for c in clips]
        adjustments: List[StitchAdjustment] = []

        for i in range(len(clips) - 1):
            clip, next_clip = clips[i], clips[i + 1]
            transition = f"{clip.type}->{next_clip.type}"
            try:
                candidate, source_duration = self._analyze_pair(clip, next_clip)
                ratio = min(1.0, candidate.timestamp / source_duration)
                new_duration = clip.duration * ratio
                if new_duration <= 0:
                    raise ValueError(f"cut at {candidate.timestamp:.3f}s leaves no content")
                durations[i] = new_duration
                adjusted_end = clip.start_time + new_duration
                adjustments.append(StitchAdjustment(
                    clip_index=i,
                    original_end_time=clip.end_time,
                    adjusted_end_time=adjusted_end,
                    trimmed_seconds=max(0.0, clip.end_time - adjusted_end),
                    similarity=candidate.similarity,
                    transition_name=transition,
                ))
                logger.info(
                    f"[Stitch] {transition} clip {i}: cut at {candidate.timestamp:.3f}s "
                    f"(frame {candidate.frame_index}, similarity {candidate.similarity:.3f}), "
                    f"trimmed {clip.end_time - adjusted_end:.3f}s"
                )
            except (AdStitchError, ValueError, OSError, subprocess.TimeoutExpired) as e:
                logger.warning(f"[Stitch] {transition} clip {i}: analysis failed, keeping timing ({e})")
                adjustments.append(StitchAdjustment(
                    clip_index=i,
                    original_end_time=clip.end_time,
                    adjusted_end_time=clip.end_time,
                    trimmed_seconds=0.0,
                    similarity=0.0,
                    transition_name=transition,
                ))

        return relay_timeline(clips, durations), adjustments


def relay_timeline(clips: Sequence[Clip], durations: Sequence[float]) -> List[Clip]:
    """Rebuild a contiguous timeline from new per-clip durations."""
    cursor = clips[0].start_time
    relaid = []
    for clip, duration in zip(clips, durations):
        relaid.append(clip.model_copy(update={"start_time": cursor, "end_time": cursor + duration}))
        cursor += duration
    return relaid


def optimize_stitch_points(clips: Sequence[Clip], **kwargs) -> Tuple[List[Clip], List[StitchAdjustment]]:
    return StitchPointOptimizer(**kwargs).optimize(clips)


def compose_with_smart_stitching(
    clips: Sequence[Clip],
    options: CompositionOptions,
    optimizer: Optional[StitchPointOptimizer] = None,
    **compose_kwargs,
) -> Tuple[str, List[StitchAdjustment]]:
    """Optimize stitch points, then compose the adjusted timeline."""
    optimizer = optimizer or StitchPointOptimizer()
    logger.info(f"[Stitch] Optimizing {max(0, len(clips) - 1)} transition(s)")
    adjusted, adjustments = optimizer.optimize(clips)
    total_trim = sum(a.trimmed_seconds for a in adjustments)
    logger.info(f"[Stitch] Total trimmed: {total_trim:.3f}s")
    output = compose_video(adjusted, options, **compose_kwargs)
    return output, adjustments
