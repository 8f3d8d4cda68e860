"""
Tests for the click CLI.
"""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from adstitch.api import Services
from adstitch.cli import cli
from adstitch.continuity import ContinuityRecutService
from adstitch.core.job_store import InMemoryJobRepository
from adstitch.orchestrator import SegmentJobOrchestrator

from conftest import FakeJudge, FakeVideoProvider, MemoryStorageSink, RecordingCostTracker


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def fake_services(monkeypatch):
    monkeypatch.setattr("adstitch.orchestrator.download_bytes", lambda url, timeout=None: b"video")
    repository = InMemoryJobRepository()
    storage = MemoryStorageSink()
    costs = RecordingCostTracker()
    services = Services(
        repository,
        storage,
        SegmentJobOrchestrator(repository, FakeVideoProvider(broken=["Logo"]), storage, cost_tracker=costs,
                               poll_interval=0, sleep=lambda s: None),
        ContinuityRecutService(repository, storage, FakeJudge(), cost_tracker=costs),
    )
    monkeypatch.setattr("adstitch.api.get_services", lambda: services)
    return services


def test_help_lists_commands(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("compose", "export", "generate", "status", "recut", "costs", "serve"):
        assert command in result.output


def test_compose_builds_contiguous_timeline(runner, tmp_path, monkeypatch):
    """Probed durations are laid end to end before composing."""
    clips = []
    for name in ("a.mp4", "b.mp4"):
        path = tmp_path / name
        path.write_bytes(b"x")
        clips.append(str(path))
    captured = {}

    def fake_compose(timeline, options, **kwargs):
        captured["timeline"] = timeline
        captured["options"] = options
        return options.output_path

    monkeypatch.setattr("adstitch.video_metadata.get_duration", lambda path: 4.0 if path.endswith("a.mp4") else 3.0)
    monkeypatch.setattr("adstitch.composer.compose_video", fake_compose)
    result = runner.invoke(cli, ["compose", *clips, "-o", str(tmp_path / "out.mp4"), "--aspect", "16:9"])

    assert result.exit_code == 0, result.output
    assert [(c.start_time, c.end_time) for c in captured["timeline"]] == [(0.0, 4.0), (4.0, 7.0)]
    assert (captured["options"].output_width, captured["options"].output_height) == (1920, 1080)


def test_generate_reports_failed_job(runner, tmp_path, fake_services):
    """A job with a failed segment prints the table and exits 1."""
    board = tmp_path / "storyboard.json"
    board.write_text(json.dumps({"storyboard": {"segments": [
        {"type": "hook", "startTime": 0, "endTime": 4, "visualPrompt": "Bottle on a rock"},
        {"type": "cta", "startTime": 4, "endTime": 8, "visualPrompt": "Logo reveal"},
    ]}}))

    result = runner.invoke(cli, ["generate", str(board)])

    assert result.exit_code == 1
    assert "failed" in result.output
    assert "model crashed" in result.output


def test_generate_rejects_invalid_json(runner, tmp_path, fake_services):
    board = tmp_path / "storyboard.json"
    board.write_text(json.dumps({"segments": []}))
    result = runner.invoke(cli, ["generate", str(board)])
    assert result.exit_code == 1
    assert "Invalid storyboard" in result.output


def test_status_unknown_job(runner, fake_services):
    result = runner.invoke(cli, ["status", "missing"])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_export_rejects_unknown_format(runner, tmp_path):
    video = tmp_path / "in.mp4"
    video.write_bytes(b"x")
    result = runner.invoke(cli, ["export", str(video), "--format", "avi"])
    assert result.exit_code != 0
    assert not Path(tmp_path / "in.avi").exists()
