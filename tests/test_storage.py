"""
Tests for storage sinks and media fetching.
"""

import base64
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

from adstitch.exceptions import StorageError
from adstitch.storage import LocalStorageSink, download_bytes, fetch_media


class TestLocalStorageSink:
    """Tests for the filesystem sink."""

    def test_put_returns_file_uri(self, tmp_path):
        sink = LocalStorageSink(root=tmp_path / "store")
        url = sink.put(b"video", "ai_videos", "mp4")

        assert url.startswith("file://")
        assert url.endswith(".mp4")
        stored = sink.resolve(url)
        assert stored.read_bytes() == b"video"
        assert stored.parent.name == "ai_videos"
        assert not list(stored.parent.glob("*.part"))

    def test_public_base_url(self, tmp_path):
        """With a base URL, URLs are public and still resolvable locally."""
        sink = LocalStorageSink(root=tmp_path, public_base_url="https://media.example.com/")
        url = sink.put(b"mp3", "ai_voice", "mp3")

        assert url.startswith("https://media.example.com/ai_voice/")
        assert sink.resolve(url).read_bytes() == b"mp3"
        local = sink.get(url, tmp_path / "work")
        assert local.read_bytes() == b"mp3"

    def test_empty_object_rejected(self, tmp_path):
        with pytest.raises(StorageError):
            LocalStorageSink(root=tmp_path).put(b"", "ai_videos")

    def test_unknown_url_not_resolved(self, tmp_path):
        assert LocalStorageSink(root=tmp_path).resolve("https://elsewhere/x.mp4") is None


class TestFetchMedia:
    """Tests for fetch_media."""

    def test_local_path(self, tmp_path):
        source = tmp_path / "frame.png"
        source.write_bytes(b"png")
        target = fetch_media(str(source), tmp_path / "dest")
        assert target.read_bytes() == b"png"
        assert target.suffix == ".png"

    def test_file_uri(self, tmp_path):
        source = tmp_path / "clip.mp4"
        source.write_bytes(b"mp4")
        assert fetch_media(source.as_uri(), tmp_path / "dest", name="copy.mp4").name == "copy.mp4"

    def test_data_uri(self, tmp_path):
        ref = "data:image/jpeg;base64," + base64.b64encode(b"jpegdata").decode()
        target = fetch_media(ref, tmp_path)
        assert target.suffix == ".jpeg"
        assert target.read_bytes() == b"jpegdata"

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(StorageError, match="not found"):
            fetch_media(str(tmp_path / "nope.mp4"), tmp_path)

    def test_http_download_streams_to_file(self, tmp_path):
        response = MagicMock()
        response.iter_content.return_value = [b"ab", b"cd"]
        response.__enter__.return_value = response
        with patch("adstitch.storage.requests.get", return_value=response) as get:
            target = fetch_media("https://cdn.example.com/v/clip.mp4?sig=1", tmp_path)

        assert target.read_bytes() == b"abcd"
        assert target.suffix == ".mp4"
        assert get.call_args[1]["stream"] is True

    def test_http_error(self, tmp_path):
        with patch("adstitch.storage.requests.get", side_effect=requests.exceptions.ConnectionError("down")):
            with pytest.raises(StorageError):
                fetch_media("https://cdn.example.com/clip.mp4", tmp_path)


def test_download_bytes_maps_http_errors():
    response = MagicMock()
    response.raise_for_status.side_effect = requests.exceptions.HTTPError("404")
    with patch("adstitch.storage.requests.get", return_value=response):
        with pytest.raises(StorageError):
            download_bytes("https://cdn.example.com/missing.mp4")
