"""
Video metadata probing via ffprobe.

The composer needs to know whether each clip carries its own audio stream;
the stitching and re-cut services need exact source durations.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Tuple

from .core.cmd_runner import CommandError, run_command
from .exceptions import MetadataExtractionError
from .ffmpeg_utils import build_ffprobe_cmd

PROBE_TIMEOUT = 30


@dataclass
class VideoMetadata:
    """Metadata extracted from a video file via ffprobe."""
    path: str
    width: int
    height: int
    fps: float
    duration: float
    codec: str
    has_audio: bool

    @property
    def resolution(self) -> Tuple[int, int]:
        return (self.width, self.height)

    @property
    def frame_count(self) -> int:
        """Estimated frame count from duration and frame rate."""
        return int(round(self.duration * self.fps)) if self.fps > 0 else 0


def _parse_frame_rate(fps_str: str) -> float:
    """Parse FFprobe frame rate strings like '30000/1001'."""
    if not fps_str:
        return 0.0
    try:
        if "/" in fps_str:
            num, den = fps_str.split("/")
            den = float(den)
            return float(num) / den if den else 0.0
        return float(fps_str)
    except ValueError:
        return 0.0


def _run_probe(path: str) -> Dict[str, Any]:
    cmd = build_ffprobe_cmd([
        "-show_entries",
        "stream=codec_type,codec_name,width,height,r_frame_rate,avg_frame_rate,duration:format=duration",
        "-of", "json",
        path,
    ], verbosity="error")
    try:
        result = run_command(cmd, timeout=PROBE_TIMEOUT)
        return json.loads(result.stdout or "{}")
    except CommandError as e:
        raise MetadataExtractionError(f"ffprobe failed for {path}: {e.stderr.strip()}") from e
    except json.JSONDecodeError as e:
        raise MetadataExtractionError(f"ffprobe returned invalid JSON for {path}") from e


def probe_metadata(path: str) -> VideoMetadata:
    """
    Extract stream and container metadata.

    Raises:
        MetadataExtractionError: ffprobe failed or the file has no video stream
    """
    data = _run_probe(path)
    streams: List[Dict[str, Any]] = data.get("streams") or []
    video = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video is None:
        raise MetadataExtractionError(f"No video stream in {path}")

    duration = float((data.get("format") or {}).get("duration") or video.get("duration") or 0.0)
    return VideoMetadata(
        path=path,
        width=int(video.get("width") or 0),
        height=int(video.get("height") or 0),
        fps=_parse_frame_rate(video.get("avg_frame_rate") or video.get("r_frame_rate") or ""),
        duration=duration,
        codec=(video.get("codec_name") or "unknown").lower(),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
    )


def get_duration(path: str) -> float:
    """Container duration in seconds (audio or video files)."""
    data = _run_probe(path)
    duration = (data.get("format") or {}).get("duration")
    if duration is None:
        raise MetadataExtractionError(f"No duration reported for {path}")
    return float(duration)


def has_audio_stream(path: str) -> bool:
    data = _run_probe(path)
    return any(s.get("codec_type") == "audio" for s in data.get("streams") or [])

