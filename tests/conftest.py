import shutil
import subprocess
import threading
from pathlib import Path

import pytest

from adstitch.config import reload_settings
from adstitch.exceptions import JudgeError, StorageError
from adstitch.providers.base import (
    FrameClassifier,
    FrameJudge,
    FrameJudgment,
    PredictionFailed,
    PredictionPending,
    PredictionSucceeded,
    SpeechProvider,
    VideoProvider,
)
from adstitch.storage import StorageSink, fetch_media


requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None,
    reason="ffmpeg not installed",
)

requires_ffprobe = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not installed",
)


def make_completed(cmd, returncode=0, stderr="", stdout=""):
    return subprocess.CompletedProcess(cmd, returncode=returncode, stdout=stdout, stderr=stderr)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point every data directory at tmp_path and keep the test environment deterministic."""
    data = tmp_path / "data"
    monkeypatch.setenv("ADSTITCH_DATA_DIR", str(data))
    monkeypatch.setenv("STORAGE_DIR", str(data / "storage"))
    monkeypatch.setenv("OUTPUT_DIR", str(data / "output"))
    monkeypatch.setenv("LOG_DIR", str(data / "logs"))
    monkeypatch.setenv("TEMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setenv("JOB_STORE", "memory")
    for name in ("DEMO_MODE", "JOB_LOG_FILES", "MAX_CONCURRENT_SEGMENTS", "REPLICATE_API_TOKEN",
                 "ELEVENLABS_API_KEY", "OPENAI_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    (tmp_path / "tmp").mkdir(exist_ok=True)
    settings = reload_settings()
    yield settings
    monkeypatch.undo()
    reload_settings()


# =============================================================================
# Fakes
# =============================================================================

class RecordingCostTracker:
    def __init__(self):
        self.events = []

    def track(self, operation, amount, metadata=None):
        self.events.append((operation, amount, dict(metadata or {})))


class MemoryStorageSink(StorageSink):
    """Keeps stored objects in a dict; ``get`` materializes them into dest_dir."""

    def __init__(self):
        self.objects = {}
        self._lock = threading.Lock()
        self._counter = 0

    def put(self, data, folder, extension="mp4"):
        with self._lock:
            self._counter += 1
            url = f"mem://{folder}/{self._counter:04d}.{extension}"
            self.objects[url] = data
        return url

    def get(self, url, dest_dir):
        if url in self.objects:
            dest = Path(dest_dir)
            dest.mkdir(parents=True, exist_ok=True)
            target = dest / url.rsplit("/", 1)[-1]
            target.write_bytes(self.objects[url])
            return target
        return fetch_media(url, dest_dir)

    def urls(self, folder):
        return [u for u in self.objects if u.startswith(f"mem://{folder}/")]


class FailingStorageSink(StorageSink):
    def __init__(self):
        self.attempts = 0

    def put(self, data, folder, extension="mp4"):
        self.attempts += 1
        raise StorageError("bucket unavailable")


class FakeVideoProvider(VideoProvider):
    """
    Scripted prediction API.

    Prompts containing a word from ``flagged`` fail with a moderation error
    (E005) ``flag_times`` times; prompts containing a word from ``broken``
    fail terminally. Every prediction reports ``pending_polls`` pending
    polls before its terminal state.
    """

    name = "fake-video"

    def __init__(self, flagged=(), flag_times=2, broken=(), pending_polls=1):
        self.flagged = tuple(flagged)
        self.flag_times = flag_times
        self.broken = tuple(broken)
        self.pending_polls = pending_polls
        self.requests = []
        self.polls = {}
        self._flags_served = {}
        self._outcomes = {}
        self._lock = threading.Lock()

    def create(self, request):
        with self._lock:
            prediction_id = f"pred-{len(self.requests)}"
            self.requests.append(request)
            self.polls[prediction_id] = 0
            word = next((w for w in self.flagged if w in request.prompt), None)
            if word is not None and self._flags_served.get(word, 0) < self.flag_times:
                self._flags_served[word] = self._flags_served.get(word, 0) + 1
                outcome = PredictionFailed(prediction_id, error="Content flagged as sensitive", error_code="E005")
            elif any(w in request.prompt for w in self.broken):
                outcome = PredictionFailed(prediction_id, error="model crashed")
            else:
                outcome = PredictionSucceeded(prediction_id, output_url=f"https://cdn.example.com/{prediction_id}.mp4")
            self._outcomes[prediction_id] = outcome
        return prediction_id

    def poll(self, prediction_id):
        with self._lock:
            self.polls[prediction_id] += 1
            if self.polls[prediction_id] <= self.pending_polls:
                return PredictionPending(prediction_id)
            return self._outcomes[prediction_id]

    def fetch_result(self, prediction_id):
        return self._outcomes[prediction_id].output_url

    def prompts(self):
        return [r.prompt for r in self.requests]


class FakeSpeechProvider(SpeechProvider):
    name = "fake-speech"

    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []
        self._lock = threading.Lock()

    def synthesize(self, text, voice):
        with self._lock:
            self.calls.append((text, voice))
        if self.fail:
            from adstitch.exceptions import ProviderTransientError
            raise ProviderTransientError("tts overloaded", provider=self.name)
        return b"ID3" + text.encode()


class FakeClassifier(FrameClassifier):
    def __init__(self, minors=()):
        self.minors = set(minors)
        self.seen = []

    def contains_minor(self, image_url):
        self.seen.append(image_url)
        return image_url in self.minors


class FakeJudge(FrameJudge):
    def __init__(self, selected_index=0, score=0.9, fail=False):
        self.selected_index = selected_index
        self.score = score
        self.fail = fail
        self.calls = []

    def select_best_frame(self, candidates, target):
        self.calls.append((list(candidates), target))
        if self.fail:
            raise JudgeError("judge returned garbage")
        return FrameJudgment(
            selected_index=self.selected_index,
            similarity_score=self.score,
            differences=["hand position"],
            reasoning="closest pose",
        )


@pytest.fixture
def cost_tracker():
    return RecordingCostTracker()


@pytest.fixture
def memory_storage():
    return MemoryStorageSink()
