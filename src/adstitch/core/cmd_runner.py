"""
Runner for the external media tools (ffmpeg, ffprobe).

Every subprocess in AdStitch goes through ``run_command``; tests replace
this one seam with a fake that returns a ``CompletedProcess``.
"""

import subprocess
import time
from pathlib import Path
from typing import List, Optional, Sequence

from ..logger import logger


class CommandError(Exception):
    """A media tool exited with a non-zero status."""

    def __init__(self, cmd: Sequence, returncode: int, stdout: str, stderr: str):
        self.cmd = [str(x) for x in cmd]
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"{self.tool} exited with {returncode}")

    @property
    def tool(self) -> str:
        return Path(self.cmd[0]).name if self.cmd else "command"

    @property
    def command_line(self) -> str:
        return " ".join(self.cmd)


def run_command(
    cmd: Sequence,
    timeout: Optional[float] = None,
    check: bool = True,
    log_output: bool = False,
) -> subprocess.CompletedProcess:
    """
    Run ``cmd`` with captured text output.

    Raises:
        CommandError: non-zero exit and ``check`` is set
        subprocess.TimeoutExpired: ``timeout`` elapsed (the process is killed)
        OSError: the tool could not be started
    """
    argv: List[str] = [str(x) for x in cmd]
    tool = Path(argv[0]).name
    logger.debug(f"[{tool}] {' '.join(argv)}")

    started = time.monotonic()
    try:
        result = subprocess.run(argv, timeout=timeout, check=False, capture_output=True, text=True)
    except subprocess.TimeoutExpired:
        logger.error(f"[{tool}] Timed out after {timeout}s")
        raise
    except FileNotFoundError:
        logger.error(f"[{tool}] Not found on PATH")
        raise
    except OSError as e:
        logger.error(f"[{tool}] Could not start: {e}")
        raise

    logger.debug(f"[{tool}] exit {result.returncode} after {time.monotonic() - started:.2f}s")
    if log_output and result.stderr:
        logger.debug(f"[{tool}] stderr:\n{result.stderr}")

    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stdout, result.stderr)
    return result
