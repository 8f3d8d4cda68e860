"""
FFmpeg Configuration - Central place for the composition encoding defaults.

The final ad is always encoded with the same parameters so it plays
everywhere: H.264 High, yuv420p, 1-second keyframes, AAC stereo, and the
moov atom at the start of the file for progressive playback.

Usage:
    from .ffmpeg_config import FFmpegConfig, resolution_for_aspect

    config = FFmpegConfig()
    cmd = ["ffmpeg", "-i", input_file, *config.video_params(), *config.audio_params(), output_file]
"""

from dataclasses import dataclass, field
from typing import List, Tuple

from .config import get_settings


# =============================================================================
# Standard defaults
# =============================================================================

# Resolution presets
STANDARD_WIDTH_HORIZONTAL = 1920
STANDARD_HEIGHT_HORIZONTAL = 1080
STANDARD_WIDTH_VERTICAL = 1080
STANDARD_HEIGHT_VERTICAL = 1920

# Encoding defaults
STANDARD_FPS = 30
STANDARD_PIX_FMT = "yuv420p"
STANDARD_CODEC = "libx264"
STANDARD_PROFILE = "high"
STANDARD_LEVEL = "4.1"
STANDARD_PRESET = "slow"
STANDARD_CRF = 18
STANDARD_AUDIO_CODEC = "aac"
STANDARD_AUDIO_BITRATE = "192k"
STANDARD_AUDIO_RATE = 48000
STANDARD_AUDIO_LAYOUT = "stereo"

ASPECT_RESOLUTIONS = {
    "9:16": (STANDARD_WIDTH_VERTICAL, STANDARD_HEIGHT_VERTICAL),
    "16:9": (STANDARD_WIDTH_HORIZONTAL, STANDARD_HEIGHT_HORIZONTAL),
    "1:1": (STANDARD_WIDTH_VERTICAL, STANDARD_WIDTH_VERTICAL),
}


def resolution_for_aspect(aspect_ratio: str) -> Tuple[int, int]:
    """Canonical output size for an aspect ratio string; vertical if unknown."""
    return ASPECT_RESOLUTIONS.get(aspect_ratio, (STANDARD_WIDTH_VERTICAL, STANDARD_HEIGHT_VERTICAL))


@dataclass
class FFmpegConfig:
    """Encoding parameters for the final composition."""

    codec: str = STANDARD_CODEC
    preset: str = STANDARD_PRESET
    crf: int = STANDARD_CRF
    profile: str = STANDARD_PROFILE
    level: str = STANDARD_LEVEL
    pix_fmt: str = STANDARD_PIX_FMT
    fps: int = STANDARD_FPS
    audio_codec: str = STANDARD_AUDIO_CODEC
    audio_bitrate: str = STANDARD_AUDIO_BITRATE
    audio_rate: int = STANDARD_AUDIO_RATE
    extra_video_args: List[str] = field(default_factory=list)

    @classmethod
    def from_settings(cls) -> "FFmpegConfig":
        enc = get_settings().encoding
        return cls(
            codec=enc.codec,
            preset=enc.preset,
            crf=enc.crf,
            pix_fmt=enc.pix_fmt,
            fps=enc.fps,
            audio_bitrate=enc.audio_bitrate,
        )

    def video_params(self) -> List[str]:
        """Video codec arguments including the fixed 1-second GOP."""
        gop = str(self.fps)
        params = [
            "-c:v", self.codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
            "-profile:v", self.profile,
            "-level", self.level,
            "-pix_fmt", self.pix_fmt,
            "-r", str(self.fps),
            "-g", gop,
            "-keyint_min", gop,
            "-sc_threshold", "0",
        ]
        return params + list(self.extra_video_args)

    def audio_params(self) -> List[str]:
        return [
            "-c:a", self.audio_codec,
            "-b:a", self.audio_bitrate,
            "-ar", str(self.audio_rate),
            "-ac", "2",
        ]

    def container_params(self) -> List[str]:
        """Start-of-file metadata for progressive playback."""
        return ["-movflags", "+faststart"]
