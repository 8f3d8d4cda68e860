"""
Frame Similarity Scorer

Scores how visually continuous two still frames are, on [0, 1]:

1. SSIM via ffmpeg's ``ssim`` filter (second frame scaled to the first's size).
2. If SSIM cannot be computed or parsed: PSNR computed with OpenCV,
   remapped linearly from 20-50 dB onto [0, 1].
3. If both fail: 0.0. A zero means "no information"; it is never raised.
"""

import math
import re
import subprocess
from typing import Optional, Tuple

import cv2
import numpy as np

from .core.cmd_runner import CommandError, run_command
from .ffmpeg_utils import build_ffmpeg_cmd
from .logger import logger

SSIM_PATTERN = re.compile(r"All:\s*([0-9]*\.?[0-9]+)")

PSNR_FLOOR_DB = 20.0
PSNR_CEIL_DB = 50.0
# cv2.PSNR reports ~361 dB for identical 8-bit images
PSNR_IDENTICAL_DB = 300.0

SSIM_TIMEOUT = 30


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def psnr_to_score(psnr_db: float) -> float:
    """Map PSNR in dB onto [0, 1]; identical images (inf) score 1.0."""
    if math.isinf(psnr_db):
        return 1.0
    return clamp01((psnr_db - PSNR_FLOOR_DB) / (PSNR_CEIL_DB - PSNR_FLOOR_DB))


def parse_ssim_output(stderr: str) -> Optional[float]:
    """Extract the combined SSIM value from ffmpeg's ssim filter summary."""
    matches = SSIM_PATTERN.findall(stderr or "")
    if not matches:
        return None
    try:
        return float(matches[-1])
    except ValueError:
        return None


def image_size(path: str) -> Optional[Tuple[int, int]]:
    """(width, height) of an image file, or None if it cannot be decoded."""
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        return None
    return img.shape[1], img.shape[0]


def build_ssim_filter(width: int, height: int) -> str:
    # scale2ref emits no frames for single-image inputs; scale to a fixed size instead
    return f"[1:v]scale={width}:{height}:flags=bicubic[b];[0:v][b]ssim"


def ssim_ffmpeg(frame_a: str, frame_b: str) -> Optional[float]:
    """SSIM between two image files, or None if ffmpeg fails."""
    size = image_size(frame_a)
    if size is None:
        logger.debug(f"[Similarity] ssim skipped, cannot decode {frame_a}")
        return None
    cmd = build_ffmpeg_cmd([
        "-i", frame_a,
        "-i", frame_b,
        "-lavfi", build_ssim_filter(*size),
        "-f", "null", "-",
    ], hide_banner=True)
    try:
        result = run_command(cmd, timeout=SSIM_TIMEOUT)
    except CommandError as e:
        logger.debug(f"[Similarity] ssim failed: {e.stderr.strip()[-200:]}")
        return None
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.debug(f"[Similarity] ssim unavailable: {e}")
        return None
    return parse_ssim_output(result.stderr)


def _load_pair(frame_a: str, frame_b: str) -> Tuple[np.ndarray, np.ndarray]:
    img_a = cv2.imread(frame_a, cv2.IMREAD_COLOR)
    img_b = cv2.imread(frame_b, cv2.IMREAD_COLOR)
    if img_a is None or img_b is None:
        raise ValueError(f"Could not decode {frame_a if img_a is None else frame_b}")
    if img_a.shape != img_b.shape:
        img_b = cv2.resize(img_b, (img_a.shape[1], img_a.shape[0]), interpolation=cv2.INTER_AREA)
    return img_a, img_b


def psnr_images(img_a: np.ndarray, img_b: np.ndarray) -> float:
    """PSNR in dB for 8-bit images; inf for identical images."""
    psnr = cv2.PSNR(img_a, img_b)
    if psnr >= PSNR_IDENTICAL_DB:
        return math.inf
    return float(psnr)


def psnr_opencv(frame_a: str, frame_b: str) -> Optional[float]:
    """PSNR in dB between two image files, or None if they cannot be read."""
    try:
        img_a, img_b = _load_pair(frame_a, frame_b)
    except (ValueError, cv2.error) as e:
        logger.debug(f"[Similarity] psnr failed: {e}")
        return None
    return psnr_images(img_a, img_b)


class FrameSimilarityScorer:
    """Two-stage similarity scorer (SSIM, then PSNR)."""

    def __init__(self, use_ssim: bool = True):
        self.use_ssim = use_ssim

    def score(self, frame_a: str, frame_b: str) -> float:
        if self.use_ssim:
            ssim = ssim_ffmpeg(frame_a, frame_b)
            if ssim is not None:
                return clamp01(ssim)

        psnr = psnr_opencv(frame_a, frame_b)
        if psnr is not None:
            return psnr_to_score(psnr)

        logger.debug(f"[Similarity] No metric available for {frame_a} vs {frame_b}")
        return 0.0


_default_scorer = FrameSimilarityScorer()


def score(frame_a: str, frame_b: str) -> float:
    """Continuity score in [0, 1] between two image files."""
    return _default_scorer.score(frame_a, frame_b)
