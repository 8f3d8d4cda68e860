"""
Tests for frame similarity scoring (SSIM via ffmpeg, PSNR via OpenCV).
"""

import math

import cv2
import numpy as np
import pytest

from adstitch import frame_similarity
from adstitch.core.cmd_runner import CommandError
from adstitch.frame_similarity import (
    FrameSimilarityScorer,
    clamp01,
    parse_ssim_output,
    psnr_images,
    psnr_to_score,
)

from conftest import make_completed, requires_ffmpeg


SSIM_STDERR = (
    "[Parsed_ssim_1 @ 0x55d] SSIM Y:0.981234 (17.26) U:0.990000 (20.0) V:0.990000 (20.0) "
    "All:0.985123 (18.27)\n"
)


def write_image(path, image):
    assert cv2.imwrite(str(path), image)
    return str(path)


def gradient_image(width=64, height=48, shift=0):
    x = (np.arange(width) * 4 + shift) % 256
    row = np.tile(x.astype(np.uint8), (height, 1))
    return np.dstack([row, row[:, ::-1], np.full_like(row, 128)])


class TestHelpers:
    """Tests for the metric helpers."""

    def test_parse_ssim_all_value(self):
        """The combined All: value is extracted."""
        assert parse_ssim_output(SSIM_STDERR) == pytest.approx(0.985123)

    def test_parse_ssim_missing(self):
        """No summary line yields None."""
        assert parse_ssim_output("Conversion failed!") is None
        assert parse_ssim_output("") is None

    def test_psnr_mapping_range(self):
        """20 dB maps to 0, 50 dB to 1, values outside are clamped."""
        assert psnr_to_score(20.0) == 0.0
        assert psnr_to_score(35.0) == pytest.approx(0.5)
        assert psnr_to_score(50.0) == 1.0
        assert psnr_to_score(5.0) == 0.0
        assert psnr_to_score(80.0) == 1.0
        assert psnr_to_score(math.inf) == 1.0

    def test_clamp01_handles_nan(self):
        """NaN is never a valid score."""
        assert clamp01(float("nan")) == 0.0
        assert clamp01(1.7) == 1.0
        assert clamp01(-0.2) == 0.0

    def test_psnr_identical_images_is_infinite(self):
        """Zero error means infinite PSNR."""
        img = gradient_image()
        assert psnr_images(img, img.copy()) == math.inf

    def test_psnr_of_different_images_is_finite(self):
        """Different images give a finite PSNR from cv2."""
        psnr = psnr_images(gradient_image(), gradient_image(shift=90))
        assert 0.0 < psnr < 50.0


class TestFrameSimilarityScorer:
    """Tests for the two-stage scorer."""

    def test_ssim_used_when_available(self, tmp_path, monkeypatch):
        """The SSIM value from ffmpeg stderr is the score."""
        calls = []

        def fake_run(cmd, **kw):
            calls.append(cmd)
            return make_completed(cmd, stderr=SSIM_STDERR)

        monkeypatch.setattr("adstitch.frame_similarity.run_command", fake_run)
        a = write_image(tmp_path / "a.png", gradient_image(64, 48))
        b = write_image(tmp_path / "b.png", gradient_image(128, 96))

        assert FrameSimilarityScorer().score(a, b) == pytest.approx(0.985123)
        graph = calls[0][calls[0].index("-lavfi") + 1]
        assert graph == "[1:v]scale=64:48:flags=bicubic[b];[0:v][b]ssim"

    def test_undecodable_first_frame_skips_ssim(self, tmp_path, monkeypatch):
        """Without frame A's size ffmpeg is not invoked."""
        def unexpected(cmd, **kw):
            raise AssertionError("ffmpeg should not run")

        monkeypatch.setattr("adstitch.frame_similarity.run_command", unexpected)
        assert frame_similarity.ssim_ffmpeg(str(tmp_path / "missing.png"), str(tmp_path / "b.png")) is None

    def test_falls_back_to_psnr(self, tmp_path, monkeypatch):
        """If ffmpeg fails the PSNR of the decoded images is used."""
        def failing(cmd, **kw):
            raise CommandError(cmd, 1, "", "No such filter: 'ssim'")

        monkeypatch.setattr("adstitch.frame_similarity.run_command", failing)
        img = gradient_image()
        a = write_image(tmp_path / "a.png", img)
        b = write_image(tmp_path / "b.png", img)

        assert FrameSimilarityScorer().score(a, b) == 1.0

    def test_falls_back_when_ffmpeg_missing(self, tmp_path, monkeypatch):
        """A missing ffmpeg binary is treated like a failed metric."""
        def missing(cmd, **kw):
            raise FileNotFoundError("ffmpeg")

        monkeypatch.setattr("adstitch.frame_similarity.run_command", missing)
        a = write_image(tmp_path / "a.png", gradient_image())
        b = write_image(tmp_path / "b.png", gradient_image(shift=90))

        score = FrameSimilarityScorer().score(a, b)
        assert 0.0 <= score < 1.0

    def test_different_sizes_are_compared(self, tmp_path):
        """The second image is resized to the first before PSNR."""
        a = write_image(tmp_path / "a.png", gradient_image(64, 48))
        b = write_image(tmp_path / "b.png", gradient_image(128, 96))
        score = FrameSimilarityScorer(use_ssim=False).score(a, b)
        assert 0.0 <= score <= 1.0

    def test_unreadable_frames_score_zero(self, tmp_path):
        """No metric available yields 0.0 rather than an error."""
        missing = str(tmp_path / "missing.jpg")
        assert FrameSimilarityScorer(use_ssim=False).score(missing, missing) == 0.0

    def test_module_level_score(self, tmp_path, monkeypatch):
        """score() delegates to the default scorer."""
        monkeypatch.setattr(
            "adstitch.frame_similarity.run_command",
            lambda cmd, **kw: make_completed(cmd, stderr="All:0.5 (3.0)"),
        )
        a = write_image(tmp_path / "a.png", gradient_image())
        assert frame_similarity.score(a, a) == 0.5


@requires_ffmpeg
class TestSimilarityWithFFmpeg:
    """SSIM through real ffmpeg."""

    def test_identical_frames_score_high(self, tmp_path):
        """Two identical frames score above 0.95 with the primary metric."""
        img = gradient_image(160, 120)
        a = write_image(tmp_path / "a.png", img)
        b = write_image(tmp_path / "b.png", img)
        ssim = frame_similarity.ssim_ffmpeg(a, b)
        assert ssim is not None
        assert ssim > 0.95
        assert FrameSimilarityScorer().score(a, b) > 0.95

    def test_different_sizes_score_with_ssim(self, tmp_path):
        """A frame at another resolution is scaled to the first and scored by SSIM."""
        a = write_image(tmp_path / "a.png", cv2.resize(gradient_image(), (320, 240), interpolation=cv2.INTER_LINEAR))
        b = write_image(tmp_path / "b.png", cv2.resize(gradient_image(), (640, 480), interpolation=cv2.INTER_LINEAR))
        ssim = frame_similarity.ssim_ffmpeg(a, b)
        assert ssim is not None
        assert 0.8 < ssim <= 1.0

    def test_jpeg_frames(self, tmp_path):
        """Extracted frames are JPEGs; SSIM works on them too."""
        img = gradient_image(160, 120)
        a = write_image(tmp_path / "a.jpg", img)
        b = write_image(tmp_path / "b.jpg", img)
        ssim = frame_similarity.ssim_ffmpeg(a, b)
        assert ssim is not None
        assert ssim > 0.95
