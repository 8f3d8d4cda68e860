"""
Frame extraction and trimming primitives.

All functions write into caller-provided paths (normally inside a
TempWorkspace) and raise FrameExtractionError / FFmpegError on failure.
"""

import os
from pathlib import Path
from typing import List, Union

from .core.cmd_runner import CommandError, run_command
from .core.temp_files import atomic_ffmpeg
from .exceptions import FFmpegError, FrameExtractionError
from .ffmpeg_utils import build_ffmpeg_cmd, format_seconds, stderr_tail

PathLike = Union[str, Path]

EXTRACT_TIMEOUT = 60


def extract_frame_at(video_path: PathLike, timestamp: float, output_path: PathLike) -> str:
    """Write the frame shown at ``timestamp`` as a JPEG."""
    output_path = str(output_path)
    cmd = build_ffmpeg_cmd([
        "-ss", format_seconds(timestamp),
        "-i", str(video_path),
        "-frames:v", "1",
        "-q:v", "2",
        output_path,
    ], loglevel="error")
    try:
        run_command(cmd, timeout=EXTRACT_TIMEOUT)
    except CommandError as e:
        raise FrameExtractionError(
            f"Could not extract frame at {timestamp:.3f}s from {video_path}: {stderr_tail(e.stderr, 5)}"
        ) from e
    if not os.path.exists(output_path) or os.path.getsize(output_path) == 0:
        raise FrameExtractionError(f"No frame at {timestamp:.3f}s in {video_path}")
    return output_path


def extract_first_frame(video_path: PathLike, output_path: PathLike) -> str:
    return extract_frame_at(video_path, 0.0, output_path)


def extract_frames_from_end(
    video_path: PathLike,
    duration: float,
    output_dir: PathLike,
    window: float = 1.0,
) -> List[str]:
    """
    Extract every frame of the last ``window`` seconds, in chronological order.

    Frame 0 is at ``duration - window``; the list is spaced evenly across
    the window at the source frame rate.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    start = max(0.0, duration - window)
    pattern = str(output_dir / "frame_%04d.jpg")
    cmd = build_ffmpeg_cmd([
        "-ss", format_seconds(start),
        "-i", str(video_path),
        "-t", format_seconds(window),
        "-fps_mode", "passthrough",
        "-q:v", "2",
        pattern,
    ], loglevel="error")
    try:
        run_command(cmd, timeout=EXTRACT_TIMEOUT)
    except CommandError as e:
        raise FrameExtractionError(
            f"Could not extract end frames from {video_path}: {stderr_tail(e.stderr, 5)}"
        ) from e

    frames = sorted(str(p) for p in output_dir.glob("frame_*.jpg"))
    if not frames:
        raise FrameExtractionError(f"No frames extracted from the last {window}s of {video_path}")
    return frames


def trim_video_at_timestamp(video_path: PathLike, timestamp: float, output_path: PathLike) -> str:
    """
    Cut the video so it ends at ``timestamp`` (frame accurate, re-encoded).
    """
    if timestamp <= 0:
        raise FFmpegError(f"Cannot trim {video_path} at non-positive timestamp {timestamp}")
    with atomic_ffmpeg(output_path) as temp_path:
        cmd = build_ffmpeg_cmd([
            "-i", str(video_path),
            "-t", format_seconds(timestamp),
            "-c:v", "libx264", "-preset", "fast", "-crf", "18",
            "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "192k",
            "-movflags", "+faststart",
            temp_path,
        ], loglevel="error")
        try:
            run_command(cmd, timeout=EXTRACT_TIMEOUT * 5)
        except CommandError as e:
            raise FFmpegError(
                f"Trim at {timestamp:.3f}s failed: {stderr_tail(e.stderr)}",
                command=" ".join(cmd),
                stderr=e.stderr,
            ) from e
    return str(output_path)
