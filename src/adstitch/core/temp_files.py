"""
Scoped temporary files and atomic FFmpeg writes.

Every operation that downloads clips or extracts frames does so inside a
TempWorkspace, which is removed on every exit path. Final outputs are
written through atomic_ffmpeg so a failed encode never leaves a partial file
at the destination.

Usage:
    from adstitch.core.temp_files import TempWorkspace, atomic_ffmpeg

    with TempWorkspace("recut") as ws:
        frame = ws.path("target.jpg")
        ...
    # directory and everything in it is gone

    with atomic_ffmpeg(output_path) as temp_path:
        run_command(build_ffmpeg_cmd([... , temp_path]))
    # temp_path renamed to output_path on success
"""

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional, Union

from ..logger import logger


class TempWorkspace:
    """A private temporary directory scoped to one operation."""

    def __init__(self, prefix: str = "adstitch", base_dir: Optional[Union[str, Path]] = None):
        self.prefix = prefix
        self.base_dir = str(base_dir) if base_dir else None
        self.root: Optional[Path] = None

    def __enter__(self) -> "TempWorkspace":
        if self.base_dir:
            os.makedirs(self.base_dir, exist_ok=True)
        self.root = Path(tempfile.mkdtemp(prefix=f"{self.prefix}_", dir=self.base_dir))
        logger.debug(f"Temp workspace created: {self.root}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()

    def path(self, name: str) -> Path:
        """Path for a file inside the workspace (not created)."""
        if self.root is None:
            raise RuntimeError("TempWorkspace used outside of its context")
        return self.root / name

    def subdir(self, name: str) -> Path:
        target = self.path(name)
        target.mkdir(parents=True, exist_ok=True)
        return target

    def cleanup(self) -> None:
        if self.root is not None and self.root.exists():
            shutil.rmtree(self.root, ignore_errors=True)
            logger.debug(f"Temp workspace removed: {self.root}")
        self.root = None


@contextmanager
def atomic_ffmpeg(
    output_path: Union[str, Path],
    suffix: str = ".tmp",
) -> Generator[str, None, None]:
    """
    Context manager for atomic FFmpeg writes.

    Yields a temporary sibling path; on success the file is renamed to
    output_path, on failure the temporary file is removed and the error
    propagates.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = str(output_path) + suffix + output_path.suffix

    try:
        yield temp_path

        if os.path.exists(temp_path):
            os.replace(temp_path, str(output_path))
            logger.debug(f"Atomic write: {temp_path} -> {output_path}")
        else:
            raise FileNotFoundError(f"FFmpeg did not create output: {temp_path}")

    except BaseException:
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
                logger.debug(f"Cleaned up failed temp: {temp_path}")
            except OSError as e:
                logger.warning(f"Could not remove temp file {temp_path}: {e}")
        raise
