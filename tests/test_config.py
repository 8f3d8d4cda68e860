"""
Tests for centralized configuration module.
"""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from adstitch.config import (
    OrchestratorConfig,
    PathConfig,
    ProviderConfig,
    Settings,
    StitchConfig,
    StoreConfig,
    get_settings,
    reload_settings,
)
from adstitch.core.job_store import InMemoryJobRepository, create_job_repository
from adstitch.exceptions import ConfigurationError


class TestPathConfig:
    """Tests for PathConfig."""

    def test_default_paths(self):
        """Default paths are relative to the working directory."""
        with patch.dict(os.environ, {}, clear=True):
            config = PathConfig()
            assert config.data_dir == Path("./data")
            assert config.storage_dir == Path("./data/storage")
            assert config.temp_dir == Path("/tmp")

    def test_custom_paths_from_env(self):
        """Paths can be overridden via environment."""
        with patch.dict(os.environ, {"OUTPUT_DIR": "/custom/output", "LOG_DIR": "/custom/logs"}):
            config = PathConfig()
            assert config.output_dir == Path("/custom/output")
            assert config.log_dir == Path("/custom/logs")

    def test_ensure_directories(self, tmp_path):
        """ensure_directories creates every persistent directory."""
        with patch.dict(os.environ, {
            "ADSTITCH_DATA_DIR": str(tmp_path / "data"),
            "STORAGE_DIR": str(tmp_path / "storage"),
            "OUTPUT_DIR": str(tmp_path / "output"),
            "LOG_DIR": str(tmp_path / "logs"),
        }):
            config = PathConfig()
            config.ensure_directories()
            for name in ("data", "storage", "output", "logs"):
                assert (tmp_path / name).is_dir()


class TestProviderConfig:
    """Tests for ProviderConfig."""

    def test_backends_disabled_without_keys(self):
        """No credentials means no configured backend."""
        with patch.dict(os.environ, {}, clear=True):
            config = ProviderConfig()
            assert config.has_video_backend is False
            assert config.has_speech_backend is False
            assert config.has_vision_backend is False

    def test_backends_enabled_by_keys(self):
        with patch.dict(os.environ, {"REPLICATE_API_TOKEN": "r8_x", "OPENAI_API_KEY": "sk-x"}):
            config = ProviderConfig()
            assert config.has_video_backend is True
            assert config.has_vision_backend is True


class TestOrchestratorConfig:
    """Tests for OrchestratorConfig."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = OrchestratorConfig()
            assert config.poll_interval == 2.0
            assert config.max_concurrent_segments is None
            assert config.demo_mode is False
            assert config.job_log_files is False

    @pytest.mark.parametrize("value,expected", [("1", True), ("true", True), ("YES", True), ("0", False), ("off", False)])
    def test_demo_mode_flag(self, value, expected):
        """Boolean flags accept the usual spellings."""
        with patch.dict(os.environ, {"DEMO_MODE": value}):
            assert OrchestratorConfig().demo_mode is expected

    def test_concurrency_cap(self):
        with patch.dict(os.environ, {"MAX_CONCURRENT_SEGMENTS": "2"}):
            assert OrchestratorConfig().max_concurrent_segments == 2


class TestStitchConfig:
    """Tests for StitchConfig."""

    def test_defaults(self):
        with patch.dict(os.environ, {}, clear=True):
            config = StitchConfig()
            assert config.sample_window == 1.0
            assert config.sample_count == 30
            assert config.safety_margin == 0.05
            assert config.recut_window == 1.0


class TestSettings:
    """Tests for the Settings singleton."""

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()

    def test_reload_picks_up_environment(self, monkeypatch):
        """reload_settings re-reads the environment."""
        monkeypatch.setenv("STITCH_SAMPLE_COUNT", "12")
        settings = reload_settings()
        assert settings.stitch.sample_count == 12
        assert get_settings() is settings

    def test_paths_are_path_objects(self):
        settings = Settings()
        assert isinstance(settings.paths.output_dir, Path)


class TestJobStoreSelection:
    """Tests for create_job_repository."""

    def test_memory_backend(self):
        with patch.dict(os.environ, {"JOB_STORE": "memory"}):
            assert StoreConfig().backend == "memory"
        assert isinstance(create_job_repository("memory"), InMemoryJobRepository)

    def test_unknown_backend(self):
        """An unknown backend name is a configuration error."""
        with pytest.raises(ConfigurationError):
            create_job_repository("postgres")
