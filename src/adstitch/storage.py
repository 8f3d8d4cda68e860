"""
Durable storage sinks and media fetching.

A StorageSink stores generated media under a logical folder ("ai_videos",
"ai_voice", ...) and returns a URL for it. ``fetch_media`` brings any
supported reference (http(s), file://, local path, data URI) into a local
directory for processing.
"""

import base64
import os
import shutil
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union
from urllib.parse import unquote, urlparse

import requests

from .config import get_settings
from .exceptions import StorageError
from .logger import logger

DOWNLOAD_TIMEOUT = 120
CHUNK_SIZE = 1024 * 1024


class StorageSink(ABC):
    @abstractmethod
    def put(self, data: bytes, folder: str, extension: str = "mp4") -> str:
        """Store ``data`` and return its public URL."""

    def get(self, url: str, dest_dir: Union[str, Path]) -> Path:
        """Local copy of a stored object inside ``dest_dir``."""
        return fetch_media(url, dest_dir)


class LocalStorageSink(StorageSink):
    """
    Filesystem sink. URLs are ``{public_base_url}/{folder}/{name}`` when a
    base URL is configured, otherwise file:// URLs.
    """

    def __init__(self, root: Optional[Union[str, Path]] = None, public_base_url: Optional[str] = None):
        self.root = Path(root or get_settings().paths.storage_dir).resolve()
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def put(self, data: bytes, folder: str, extension: str = "mp4") -> str:
        if not data:
            raise StorageError("Refusing to store an empty object")
        name = f"{uuid.uuid4().hex}.{extension.lstrip('.')}"
        target_dir = self.root / folder
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            tmp = target_dir / f".{name}.part"
            tmp.write_bytes(data)
            os.replace(tmp, target_dir / name)
        except OSError as e:
            raise StorageError(f"Could not write {folder}/{name}: {e}") from e

        logger.debug(f"[Storage] Stored {len(data)} bytes as {folder}/{name}")
        if self.public_base_url:
            return f"{self.public_base_url}/{folder}/{name}"
        return (target_dir / name).as_uri()

    def resolve(self, url: str) -> Optional[Path]:
        """Filesystem path for a URL this sink issued, or None."""
        if self.public_base_url and url.startswith(self.public_base_url + "/"):
            return self.root / url[len(self.public_base_url) + 1:]
        if url.startswith("file://"):
            return Path(unquote(urlparse(url).path))
        return None

    def get(self, url: str, dest_dir: Union[str, Path]) -> Path:
        local = self.resolve(url)
        if local is not None:
            return fetch_media(str(local), dest_dir)
        return fetch_media(url, dest_dir)


def _suffix_from_url(url: str, default: str = ".mp4") -> str:
    suffix = Path(urlparse(url).path).suffix
    return suffix if suffix and len(suffix) <= 6 else default


def download_bytes(url: str, timeout: int = DOWNLOAD_TIMEOUT) -> bytes:
    """Whole response body of an http(s) URL."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise StorageError(f"Download failed for {url}: {e}") from e
    return response.content


def fetch_media(ref: str, dest_dir: Union[str, Path], name: Optional[str] = None) -> Path:
    """
    Copy or download ``ref`` into ``dest_dir`` and return the local path.

    Raises:
        StorageError: the reference cannot be read
    """
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)

    if ref.startswith("data:"):
        header, _, payload = ref.partition(",")
        ext = "." + header.split("/")[1].split(";")[0] if "/" in header else ".bin"
        target = dest_dir / (name or f"{uuid.uuid4().hex}{ext}")
        try:
            target.write_bytes(base64.b64decode(payload))
        except (ValueError, OSError) as e:
            raise StorageError(f"Invalid data URI: {e}") from e
        return target

    if ref.startswith(("http://", "https://")):
        target = dest_dir / (name or f"{uuid.uuid4().hex}{_suffix_from_url(ref)}")
        try:
            with requests.get(ref, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                with open(target, "wb") as f:
                    for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                        f.write(chunk)
        except (requests.exceptions.RequestException, OSError) as e:
            raise StorageError(f"Download failed for {ref}: {e}") from e
        return target

    source = Path(unquote(urlparse(ref).path)) if ref.startswith("file://") else Path(ref)
    if not source.is_file():
        raise StorageError(f"Media not found: {ref}")
    target = dest_dir / (name or f"{uuid.uuid4().hex}{source.suffix}")
    try:
        shutil.copyfile(source, target)
    except OSError as e:
        raise StorageError(f"Could not copy {ref}: {e}") from e
    return target
