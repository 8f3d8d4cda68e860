"""
Centralized Logging for AdStitch

- Plain console lines for progress, timestamped lines for warnings and errors
- Level from the LOG_LEVEL environment variable
- Job context: records emitted inside ``job_context(job_id)`` carry the job
  id, and ``configure_file_logging`` writes one file per job containing only
  that job's records (jobs run concurrently in one process)

Usage:
    from adstitch.logger import logger, job_context

    with job_context(job.id):
        logger.info("[Orchestrator] Submitting segment 0")

    log_success("Segment 2 completed")
"""

import contextvars
import logging
import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional


LOGGER_NAME = "adstitch"

_current_job: contextvars.ContextVar[str] = contextvars.ContextVar("adstitch_job", default="-")


def get_log_level() -> int:
    """LOG_LEVEL from the environment (name like DEBUG or INFO), INFO if unset or unknown."""
    level = logging.getLevelName(os.environ.get("LOG_LEVEL", "INFO").upper())
    return level if isinstance(level, int) else logging.INFO


# =============================================================================
# Job context
# =============================================================================
@contextmanager
def job_context(job_id: str) -> Iterator[None]:
    """Tag every record logged in this context (and copied contexts) with ``job_id``."""
    token = _current_job.set(job_id)
    try:
        yield
    finally:
        _current_job.reset(token)


def current_job_id() -> str:
    return _current_job.get()


class JobContextFilter(logging.Filter):
    """Adds ``record.job_id``; with ``only`` set, drops records of other jobs."""

    def __init__(self, only: Optional[str] = None):
        super().__init__()
        self.only = only

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _current_job.get()
        return self.only is None or record.job_id == self.only


# =============================================================================
# Formatters
# =============================================================================
class ConsoleFormatter(logging.Formatter):
    """INFO as-is; other levels get a time and level tag."""

    TAGGED = "%(asctime)s [{level}] %(message)s"

    def __init__(self):
        super().__init__("%(message)s", datefmt="%H:%M:%S")
        self._tagged = {
            level: logging.Formatter(self.TAGGED.format(level=name), datefmt="%H:%M:%S")
            for level, name in (
                (logging.DEBUG, "DEBUG"),
                (logging.WARNING, "WARN"),
                (logging.ERROR, "ERROR"),
                (logging.CRITICAL, "CRITICAL"),
            )
        }

    def format(self, record: logging.LogRecord) -> str:
        formatter = self._tagged.get(record.levelno)
        return formatter.format(record) if formatter else super().format(record)


class FileFormatter(logging.Formatter):
    """Detailed formatter for per-job log files."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(job_id)s | %(threadName)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


# =============================================================================
# Logger Setup
# =============================================================================
def setup_logger(name: str = LOGGER_NAME, level: Optional[int] = None) -> logging.Logger:
    """Configure ``name`` with one console handler; repeated calls are no-ops."""
    log = logging.getLogger(name)
    if log.handlers:
        return log

    log_level = level or get_log_level()
    log.setLevel(log_level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(log_level)
    console.addFilter(JobContextFilter())
    console.setFormatter(ConsoleFormatter())
    log.addHandler(console)
    return log


def get_logger(name: str = LOGGER_NAME) -> logging.Logger:
    return setup_logger(name)


def configure_file_logging(output_dir: Path, job_id: str) -> logging.Handler:
    """
    Write records logged under ``job_context(job_id)`` to ``job_{job_id}.log``.

    Returns the handler; pass it to ``remove_file_logging`` when the job ends.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(output_dir / f"job_{job_id}.log", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.addFilter(JobContextFilter(only=job_id))
    handler.setFormatter(FileFormatter())
    logger.addHandler(handler)
    if logger.level > logging.DEBUG:
        logger.setLevel(logging.DEBUG)
    return handler


def remove_file_logging(handler: logging.Handler) -> None:
    logger.removeHandler(handler)
    handler.close()


# =============================================================================
# Global Logger Instance
# =============================================================================
logger = setup_logger()


# =============================================================================
# Convenience Functions
# =============================================================================
def log_phase(phase: str) -> None:
    """Log a major phase transition with visual separator."""
    separator = "═" * 60
    logger.info(separator)
    logger.info(f"  {phase}")
    logger.info(separator)


def log_success(message: str) -> None:
    logger.info(f"   ✅ {message}")


def log_error(message: str) -> None:
    logger.error(f"   ❌ {message}")
