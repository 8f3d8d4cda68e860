"""
Tests for the continuity re-cut service.

Media steps (frame extraction, trimming) are replaced with fakes that
write small files, so the precondition order, the timestamp mapping and
the job document updates are tested without ffmpeg.
"""

from pathlib import Path

import pytest

from adstitch import continuity
from adstitch.continuity import ContinuityRecutService, selected_frame_timestamp
from adstitch.core.job_store import InMemoryJobRepository
from adstitch.core.models import Asset, AssetStatus, GenerationJob, Segment, Storyboard
from adstitch.exceptions import (
    JobNotFoundError,
    MissingFirstFrameError,
    MissingSegmentVideoError,
    NoSuccessorSegmentError,
    SegmentNotFoundError,
)

from conftest import FakeJudge


FRAME_COUNT = 30


@pytest.fixture
def fake_media(monkeypatch):
    """Frame extraction and trimming write placeholder files."""
    calls = {"extract_end": [], "trim": [], "first_frame": []}

    def fake_extract_frames_from_end(video_path, duration, output_dir, window=1.0):
        calls["extract_end"].append((str(video_path), duration, window))
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        frames = []
        for i in range(FRAME_COUNT):
            frame = out / f"frame_{i + 1:04d}.jpg"
            frame.write_bytes(b"jpg")
            frames.append(str(frame))
        return frames

    def fake_trim(video_path, timestamp, output_path):
        calls["trim"].append((str(video_path), timestamp))
        Path(output_path).write_bytes(b"trimmed:" + Path(video_path).read_bytes())
        return str(output_path)

    def fake_first_frame(video_path, output_path):
        calls["first_frame"].append(str(video_path))
        Path(output_path).write_bytes(b"first")
        return str(output_path)

    monkeypatch.setattr(continuity, "extract_frames_from_end", fake_extract_frames_from_end)
    monkeypatch.setattr(continuity, "trim_video_at_timestamp", fake_trim)
    monkeypatch.setattr(continuity, "extract_first_frame", fake_first_frame)
    return calls


@pytest.fixture
def first_frame(tmp_path):
    path = tmp_path / "segment1_first.png"
    path.write_bytes(b"png")
    return str(path)


def make_job(repository, storage, first_frame_image=None, segments=3, with_videos=True):
    storyboard = Storyboard(segments=[
        Segment(type="hook" if i == 0 else "body", description=f"beat {i}", start_time=i * 4.0,
                end_time=(i + 1) * 4.0, first_frame_image=first_frame_image if i == 1 else None)
        for i in range(segments)
    ])
    repository.save_storyboard(storyboard)
    assets = []
    for i in range(segments):
        url = storage.put(f"video-{i}".encode(), "ai_videos", "mp4") if with_videos else None
        assets.append(Asset(
            segment_id=i,
            status=AssetStatus.COMPLETED if with_videos else AssetStatus.PROCESSING,
            video_url=url,
        ))
    job = GenerationJob(storyboard_id=storyboard.id, assets=assets)
    return repository.create(job)


def make_service(repository, storage, judge, cost_tracker):
    return ContinuityRecutService(
        repository, storage, judge, window=1.0, duration_probe=lambda path: 8.0, cost_tracker=cost_tracker,
    )


class TestSelectedFrameTimestamp:
    """Tests for the frame index to timestamp mapping."""

    def test_first_frame_is_window_start(self):
        """Index 0 sits exactly one window before the end."""
        assert selected_frame_timestamp(8.0, 1.0, 30, 0) == pytest.approx(7.0)

    def test_spacing_is_window_over_count(self):
        """Frames are spaced window/frame_count apart."""
        assert selected_frame_timestamp(8.0, 1.0, 30, 15) == pytest.approx(7.5)
        assert selected_frame_timestamp(8.0, 1.0, 30, 29) == pytest.approx(7.0 + 29 / 30)

    def test_window_capped_by_duration(self):
        """A clip shorter than the window starts sampling at zero."""
        assert selected_frame_timestamp(0.5, 1.0, 10, 0) == 0.0


class TestPreconditions:
    """Preconditions are checked in order and before any media work."""

    def test_unknown_job(self, memory_storage, cost_tracker, fake_media):
        """A missing job is JobNotFoundError."""
        service = make_service(InMemoryJobRepository(), memory_storage, FakeJudge(), cost_tracker)
        with pytest.raises(JobNotFoundError):
            service.optimize("nope", 0)

    def test_unknown_segment(self, memory_storage, cost_tracker, fake_media):
        """An index outside the job is SegmentNotFoundError."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)
        with pytest.raises(SegmentNotFoundError):
            make_service(repo, memory_storage, FakeJudge(), cost_tracker).optimize(job.id, 7)

    def test_last_segment_has_no_successor(self, memory_storage, cost_tracker, fake_media):
        """The final segment cannot be re-cut; nothing is downloaded or judged."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)
        judge = FakeJudge()
        objects_before = dict(memory_storage.objects)

        with pytest.raises(NoSuccessorSegmentError):
            make_service(repo, memory_storage, judge, cost_tracker).optimize(job.id, 2)

        assert judge.calls == []
        assert fake_media["extract_end"] == []
        assert memory_storage.objects == objects_before
        assert cost_tracker.events == []

    def test_segment_without_video(self, memory_storage, cost_tracker, fake_media):
        """A segment that has not produced a video yet is rejected."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage, with_videos=False)
        with pytest.raises(MissingSegmentVideoError):
            make_service(repo, memory_storage, FakeJudge(), cost_tracker).optimize(job.id, 0)

    def test_storyboard_segment_not_generated(self, memory_storage, cost_tracker, fake_media):
        """In a demo job a storyboard segment without an asset has no video, not a missing segment."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)

        def keep_first_only(j):
            j.assets = j.assets[:1]

        repo.update(job.id, keep_first_only)
        service = make_service(repo, memory_storage, FakeJudge(), cost_tracker)
        with pytest.raises(MissingSegmentVideoError):
            service.optimize(job.id, 1)
        with pytest.raises(NoSuccessorSegmentError):
            service.optimize(job.id, 2)
        with pytest.raises(SegmentNotFoundError):
            service.optimize(job.id, 3)
        assert fake_media["extract_end"] == []

    def test_negative_index_is_unknown_segment(self, memory_storage, cost_tracker, fake_media):
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)
        with pytest.raises(SegmentNotFoundError):
            make_service(repo, memory_storage, FakeJudge(), cost_tracker).optimize(job.id, -1)

    def test_successor_without_first_frame(self, memory_storage, cost_tracker, fake_media):
        """No first-frame image and no successor video means no target."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)

        def drop_next_video(j):
            j.asset(1).video_url = None
            j.asset(1).status = AssetStatus.PROCESSING

        repo.update(job.id, drop_next_video)
        with pytest.raises(MissingFirstFrameError):
            make_service(repo, memory_storage, FakeJudge(), cost_tracker).optimize(job.id, 0)


class TestOptimize:
    """Tests for a full re-cut."""

    def test_trims_at_selected_frame(self, memory_storage, cost_tracker, fake_media, first_frame):
        """The judged frame maps to a timestamp; the trimmed clip is stored and recorded."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage, first_frame_image=first_frame)
        original_url = job.asset(0).video_url
        judge = FakeJudge(selected_index=15, score=0.82)

        result = make_service(repo, memory_storage, judge, cost_tracker).optimize(job.id, 0)

        assert result.applied is True
        assert result.trim_timestamp == pytest.approx(7.5)
        assert result.selected_frame_index == 15
        assert result.frame_count == FRAME_COUNT
        assert result.differences == ["hand position"]
        assert result.original_video_url == original_url
        assert memory_storage.objects[result.trimmed_video_url] == b"trimmed:video-0"

        # Storyboard first-frame image wins over the successor's video
        assert fake_media["first_frame"] == []
        assert len(judge.calls[0][0]) == FRAME_COUNT

        stored = repo.get(job.id).asset(0)
        assert stored.video_url == original_url
        assert stored.metadata["trimmedVideoUrl"] == result.trimmed_video_url
        assert stored.metadata["trimTimestamp"] == pytest.approx(7.5)
        assert stored.metadata["continuityScore"] == pytest.approx(0.82)
        assert stored.metadata["originalVideoUrl"] == original_url

        assert [e[0] for e in cost_tracker.events] == ["optimize-continuity"]

    def test_target_from_next_video(self, memory_storage, cost_tracker, fake_media):
        """Without a first-frame image the successor video's first frame is the target."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage)

        result = make_service(repo, memory_storage, FakeJudge(), cost_tracker).optimize(job.id, 1)

        assert result.applied is True
        assert len(fake_media["first_frame"]) == 1
        assert result.trim_timestamp == pytest.approx(7.0)

    def test_repeat_recut_starts_from_original(self, memory_storage, cost_tracker, fake_media, first_frame):
        """A second re-cut trims the original clip, not the previous trim."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage, first_frame_image=first_frame)
        service = make_service(repo, memory_storage, FakeJudge(selected_index=10), cost_tracker)

        first = service.optimize(job.id, 0)
        second = service.optimize(job.id, 0)

        assert second.original_video_url == first.original_video_url
        assert memory_storage.objects[second.trimmed_video_url] == b"trimmed:video-0"
        assert repo.get(job.id).asset(0).metadata["originalVideoUrl"] == first.original_video_url

    def test_judge_failure_keeps_original(self, memory_storage, cost_tracker, fake_media, first_frame):
        """A failed judgment is reported, not raised, and the job is unchanged."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage, first_frame_image=first_frame)
        before = repo.get(job.id).to_json_dict()

        result = make_service(repo, memory_storage, FakeJudge(fail=True), cost_tracker).optimize(job.id, 0)

        assert result.applied is False
        assert "garbage" in result.error
        assert fake_media["trim"] == []
        assert repo.get(job.id).to_json_dict() == before
        assert cost_tracker.events == []

    def test_out_of_range_judgment_keeps_original(self, memory_storage, cost_tracker, fake_media, first_frame):
        """An index outside the candidate list is treated as a failed judgment."""
        repo = InMemoryJobRepository()
        job = make_job(repo, memory_storage, first_frame_image=first_frame)

        result = make_service(
            repo, memory_storage, FakeJudge(selected_index=FRAME_COUNT), cost_tracker,
        ).optimize(job.id, 0)

        assert result.applied is False
        assert fake_media["trim"] == []
        assert "trimmedVideoUrl" not in repo.get(job.id).asset(0).metadata
