"""
AdStitch Exception Hierarchy

Structured exception types for the composition and generation engine.
All exceptions inherit from AdStitchError for easy catching.

Usage:
    from adstitch.exceptions import FFmpegError, PreconditionError

    try:
        compose(clips, options)
    except FFmpegError as e:
        logger.error(f"Compose failed: {e.stderr}")
"""

from typing import Optional


class AdStitchError(Exception):
    """Base exception for all AdStitch errors."""
    pass


# =============================================================================
# Validation Errors
# =============================================================================

class RequestValidationError(AdStitchError):
    """Malformed request shape, rejected before any work starts."""
    pass


class ConfigurationError(AdStitchError):
    """Invalid configuration or missing required settings."""
    pass


# =============================================================================
# Precondition Errors
# =============================================================================

class PreconditionError(AdStitchError):
    """A prerequisite job, segment, frame or video is missing."""

    #: Short machine-readable name of the failed condition.
    condition = "precondition"


class JobNotFoundError(PreconditionError):
    """No job exists with the requested id."""
    condition = "job_not_found"


class SegmentNotFoundError(PreconditionError):
    """The job has no segment at the requested index."""
    condition = "segment_not_found"


class NoSuccessorSegmentError(PreconditionError):
    """The segment is the last one; there is nothing to stitch into."""
    condition = "no_successor_segment"


class MissingSegmentVideoError(PreconditionError):
    """The current segment has no generated video yet."""
    condition = "missing_segment_video"


class MissingFirstFrameError(PreconditionError):
    """The next segment has neither a first-frame image nor a video."""
    condition = "missing_first_frame"


# =============================================================================
# Provider Errors
# =============================================================================

class ProviderError(AdStitchError):
    """Error talking to an external generation provider."""

    def __init__(self, message: str, provider: Optional[str] = None, prediction_id: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.prediction_id = prediction_id


class ProviderTransientError(ProviderError):
    """Timeout or connection problem; safe for the caller to retry."""
    pass


class ProviderTerminalError(ProviderError):
    """The provider reported an explicit failure for this prediction."""
    pass


class ModerationFlaggedError(ProviderTerminalError):
    """The provider rejected the input as flagged or sensitive content."""
    pass


class ProviderResponseError(ProviderError):
    """The provider returned a response shape we do not recognize."""
    pass


# =============================================================================
# Storage Errors
# =============================================================================

class StorageError(AdStitchError):
    """Durable storage sink could not store or fetch an object."""
    pass


# =============================================================================
# Rendering Errors
# =============================================================================

class RenderError(AdStitchError):
    """Error during video composition."""
    pass


class FFmpegError(RenderError):
    """FFmpeg command failed."""

    def __init__(self, message: str, command: str = None, stderr: str = None):
        super().__init__(message)
        self.command = command
        self.stderr = stderr


# =============================================================================
# Analysis Errors
# =============================================================================

class AnalysisError(AdStitchError):
    """Error during frame analysis (extraction, scoring, judging)."""
    pass


class FrameExtractionError(AnalysisError):
    """Could not extract a still frame from a video."""
    pass


class MetadataExtractionError(AnalysisError):
    """Error extracting video/audio metadata via ffprobe."""
    pass


class JudgeError(AnalysisError):
    """The multimodal frame judge failed or returned an unusable answer."""
    pass
