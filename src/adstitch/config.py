"""
Centralized Configuration for AdStitch

Single source of truth for paths, provider credentials, encoding defaults
and orchestration tuning. Every value can be overridden through the
environment.

Usage:
    from adstitch.config import get_settings

    settings = get_settings()
    data_dir = settings.paths.data_dir
    if settings.orchestrator.demo_mode:
        ...
"""

import os
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, field


def _env_bool(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


def _env_optional_int(name: str) -> Optional[int]:
    value = os.environ.get(name, "").strip()
    return int(value) if value else None


# =============================================================================
# Path Configuration
# =============================================================================
@dataclass
class PathConfig:
    """Filesystem locations used by AdStitch."""

    data_dir: Path = field(default_factory=lambda: Path(os.environ.get("ADSTITCH_DATA_DIR", "./data")))
    storage_dir: Path = field(default_factory=lambda: Path(os.environ.get("STORAGE_DIR", "./data/storage")))
    output_dir: Path = field(default_factory=lambda: Path(os.environ.get("OUTPUT_DIR", "./data/output")))
    temp_dir: Path = field(default_factory=lambda: Path(os.environ.get("TEMP_DIR", "/tmp")))
    log_dir: Path = field(default_factory=lambda: Path(os.environ.get("LOG_DIR", "./data/logs")))

    def ensure_directories(self) -> None:
        """Create all directories if they don't exist."""
        for path in [self.data_dir, self.storage_dir, self.output_dir, self.log_dir]:
            path.mkdir(parents=True, exist_ok=True)


# =============================================================================
# Provider Configuration
# =============================================================================
@dataclass
class ProviderConfig:
    """Credentials and endpoints for the external generation providers."""

    # Video generation (Replicate-style prediction API)
    replicate_api_token: str = field(default_factory=lambda: os.environ.get("REPLICATE_API_TOKEN", ""))
    replicate_base_url: str = field(default_factory=lambda: os.environ.get("REPLICATE_BASE_URL", "https://api.replicate.com/v1"))
    video_model: str = field(default_factory=lambda: os.environ.get("VIDEO_MODEL", "google/veo-3.1-fast"))

    # Speech synthesis (ElevenLabs-style TTS)
    elevenlabs_api_key: str = field(default_factory=lambda: os.environ.get("ELEVENLABS_API_KEY", ""))
    elevenlabs_base_url: str = field(default_factory=lambda: os.environ.get("ELEVENLABS_BASE_URL", "https://api.elevenlabs.io/v1"))
    default_voice_id: str = field(default_factory=lambda: os.environ.get("DEFAULT_VOICE_ID", "21m00Tcm4TlvDq8ikWAM"))
    tts_model: str = field(default_factory=lambda: os.environ.get("TTS_MODEL", "eleven_multilingual_v2"))

    # Multimodal judge and frame classifier (OpenAI-compatible chat API)
    openai_api_key: str = field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    openai_api_base: str = field(default_factory=lambda: os.environ.get("OPENAI_API_BASE", "https://api.openai.com/v1"))
    judge_model: str = field(default_factory=lambda: os.environ.get("JUDGE_MODEL", "gpt-4o"))
    classifier_model: str = field(default_factory=lambda: os.environ.get("CLASSIFIER_MODEL", "gpt-4o-mini"))

    request_timeout: float = field(default_factory=lambda: float(os.environ.get("PROVIDER_TIMEOUT", "60")))

    @property
    def has_video_backend(self) -> bool:
        return bool(self.replicate_api_token)

    @property
    def has_speech_backend(self) -> bool:
        return bool(self.elevenlabs_api_key)

    @property
    def has_vision_backend(self) -> bool:
        return bool(self.openai_api_key)


# =============================================================================
# Encoding Configuration
# =============================================================================
@dataclass
class EncodingConfig:
    """FFmpeg and video encoding settings for the final composition."""

    codec: str = field(default_factory=lambda: os.environ.get("OUTPUT_CODEC", "libx264"))
    crf: int = field(default_factory=lambda: int(os.environ.get("FINAL_CRF", "18")))
    preset: str = field(default_factory=lambda: os.environ.get("FFMPEG_PRESET", "slow"))
    pix_fmt: str = field(default_factory=lambda: os.environ.get("OUTPUT_PIX_FMT", "yuv420p"))
    fps: int = field(default_factory=lambda: int(os.environ.get("OUTPUT_FPS", "30")))
    audio_bitrate: str = field(default_factory=lambda: os.environ.get("OUTPUT_AUDIO_BITRATE", "192k"))
    timeout: int = field(default_factory=lambda: int(os.environ.get("FFMPEG_TIMEOUT", "600")))
    ffmpeg_bin: str = field(default_factory=lambda: os.environ.get("FFMPEG_BIN", "ffmpeg"))
    ffprobe_bin: str = field(default_factory=lambda: os.environ.get("FFPROBE_BIN", "ffprobe"))


# =============================================================================
# Orchestrator Configuration
# =============================================================================
@dataclass
class OrchestratorConfig:
    """Segment job fan-out and polling settings."""

    poll_interval: float = field(default_factory=lambda: float(os.environ.get("POLL_INTERVAL", "2.0")))
    # None = one worker per segment
    max_concurrent_segments: Optional[int] = field(default_factory=lambda: _env_optional_int("MAX_CONCURRENT_SEGMENTS"))
    demo_mode: bool = field(default_factory=lambda: _env_bool("DEMO_MODE"))
    max_poll_attempts: int = field(default_factory=lambda: int(os.environ.get("MAX_POLL_ATTEMPTS", "600")))
    # One log file per job under paths.log_dir
    job_log_files: bool = field(default_factory=lambda: _env_bool("JOB_LOG_FILES"))


# =============================================================================
# Stitching Configuration
# =============================================================================
@dataclass
class StitchConfig:
    """Stitch-point and continuity re-cut tuning."""

    sample_window: float = field(default_factory=lambda: float(os.environ.get("STITCH_SAMPLE_WINDOW", "1.0")))
    sample_count: int = field(default_factory=lambda: int(os.environ.get("STITCH_SAMPLE_COUNT", "30")))
    safety_margin: float = field(default_factory=lambda: float(os.environ.get("STITCH_SAFETY_MARGIN", "0.05")))
    recut_window: float = field(default_factory=lambda: float(os.environ.get("RECUT_WINDOW", "1.0")))


# =============================================================================
# Job Store Configuration
# =============================================================================
@dataclass
class StoreConfig:
    """Job repository backend selection."""

    backend: str = field(default_factory=lambda: os.environ.get("JOB_STORE", "memory").lower())
    redis_host: str = field(default_factory=lambda: os.environ.get("REDIS_HOST", "localhost"))
    redis_port: int = field(default_factory=lambda: int(os.environ.get("REDIS_PORT", "6379")))
    redis_db: int = field(default_factory=lambda: int(os.environ.get("REDIS_DB", "0")))
    job_ttl: int = field(default_factory=lambda: int(os.environ.get("JOB_TTL", str(86400 * 7))))


# =============================================================================
# Main Settings Class
# =============================================================================
@dataclass
class Settings:
    """
    Main configuration container.

    Usage:
        from adstitch.config import get_settings

        settings = get_settings()
        interval = settings.orchestrator.poll_interval
    """

    paths: PathConfig = field(default_factory=PathConfig)
    providers: ProviderConfig = field(default_factory=ProviderConfig)
    encoding: EncodingConfig = field(default_factory=EncodingConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    stitch: StitchConfig = field(default_factory=StitchConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def __post_init__(self):
        for name in ("data_dir", "storage_dir", "output_dir", "temp_dir", "log_dir"):
            value = getattr(self.paths, name)
            if isinstance(value, str):
                setattr(self.paths, name, Path(value))

    def reload(self) -> "Settings":
        """Reload settings from environment (useful after env changes)."""
        return Settings()


# =============================================================================
# Global Settings Instance (Singleton)
# =============================================================================
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (lazy initialization)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Force reload of settings from environment."""
    global _settings
    _settings = Settings()
    return _settings
