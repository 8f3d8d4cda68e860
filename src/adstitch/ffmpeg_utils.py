"""
FFmpeg/FFprobe command helpers.

The composer, frame extractor and similarity scorer all build their
commands here, so binaries and global flags are set in one place.
"""

from typing import List, Optional, Sequence

from .config import get_settings


def build_ffmpeg_cmd(
    args: Sequence[str],
    *,
    overwrite: bool = True,
    hide_banner: bool = False,
    loglevel: Optional[str] = None,
) -> List[str]:
    """``ffmpeg`` (or FFMPEG_BIN) plus global flags the caller did not already pass."""
    args = list(args)
    present = set(args)
    cmd = [get_settings().encoding.ffmpeg_bin]
    if overwrite and not present & {"-y", "-n"}:
        cmd.append("-y")
    if hide_banner and "-hide_banner" not in present:
        cmd.append("-hide_banner")
    if loglevel and "-loglevel" not in present:
        cmd += ["-loglevel", loglevel]
    return cmd + args


def build_ffprobe_cmd(args: Sequence[str], *, verbosity: Optional[str] = "error") -> List[str]:
    args = list(args)
    cmd = [get_settings().encoding.ffprobe_bin]
    if verbosity and "-v" not in args:
        cmd += ["-v", verbosity]
    return cmd + args


def format_seconds(value: float) -> str:
    """Timestamp argument for -ss/-t/trim (3 decimals, never negative)."""
    return f"{max(0.0, value):.3f}"


def stderr_tail(stderr: Optional[str], lines: int = 20) -> str:
    """Last lines of ffmpeg stderr; the actual error is at the end."""
    if not stderr:
        return ""
    return "\n".join(stderr.strip().splitlines()[-lines:])
