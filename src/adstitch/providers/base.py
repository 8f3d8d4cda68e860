"""
Abstract contracts for the external generation providers.

The engine only depends on these interfaces; concrete HTTP adapters live
next to this module and tests substitute in-memory fakes.
"""

import base64
import mimetypes
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional, Union

import requests

from ..exceptions import ProviderTerminalError, ProviderTransientError


# =============================================================================
# Video generation
# =============================================================================

@dataclass
class VideoRequest:
    prompt: str
    duration: float
    aspect_ratio: str = "9:16"
    first_frame_image: Optional[str] = None
    last_frame_image: Optional[str] = None
    subject_reference: Optional[str] = None
    negative_prompt: Optional[str] = None
    resolution: Optional[str] = None
    seed: Optional[int] = None
    model: Optional[str] = None

    @property
    def input_frames(self) -> List[str]:
        """Every image the request conditions on."""
        return [f for f in (self.first_frame_image, self.last_frame_image, self.subject_reference) if f]


@dataclass(frozen=True)
class PredictionPending:
    prediction_id: str
    status: str = "processing"  # "starting" | "processing"

    @property
    def is_terminal(self) -> bool:
        return False


@dataclass(frozen=True)
class PredictionSucceeded:
    prediction_id: str
    output_url: Optional[str] = None
    status: str = "succeeded"

    @property
    def is_terminal(self) -> bool:
        return True


@dataclass(frozen=True)
class PredictionFailed:
    prediction_id: str
    error: str = "Unknown error"
    error_code: Optional[str] = None
    status: str = "failed"  # "failed" | "canceled"

    @property
    def is_terminal(self) -> bool:
        return True


PredictionState = Union[PredictionPending, PredictionSucceeded, PredictionFailed]


class VideoProvider(ABC):
    name = "video"

    @abstractmethod
    def create(self, request: VideoRequest) -> str:
        """Submit a generation request and return the prediction id."""

    @abstractmethod
    def poll(self, prediction_id: str) -> PredictionState:
        ...

    @abstractmethod
    def fetch_result(self, prediction_id: str) -> str:
        """Media URL of a succeeded prediction."""


# =============================================================================
# Speech, classification, judging
# =============================================================================

class SpeechProvider(ABC):
    name = "speech"

    @abstractmethod
    def synthesize(self, text: str, voice: str) -> bytes:
        """Audio bytes (mp3) for ``text`` spoken by ``voice``."""


class FrameClassifier(ABC):
    name = "classifier"

    @abstractmethod
    def contains_minor(self, image_url: str) -> bool:
        """True if the image appears to show a minor. Fails open (False)."""


@dataclass(frozen=True)
class FrameJudgment:
    selected_index: int  # 0-based into the candidate list
    similarity_score: float
    differences: List[str] = field(default_factory=list)
    reasoning: str = ""


class FrameJudge(ABC):
    name = "judge"

    @abstractmethod
    def select_best_frame(self, candidates: List[str], target: str) -> FrameJudgment:
        """Pick the candidate frame that best continues into ``target``."""


# =============================================================================
# Shared HTTP helpers
# =============================================================================

def image_reference_to_url(ref: str) -> str:
    """
    Return a URL a remote API can read: http(s) and data URIs pass through,
    local files are inlined as base64 data URIs.
    """
    if ref.startswith(("http://", "https://", "data:")):
        return ref
    if not os.path.isfile(ref):
        raise FileNotFoundError(f"Image not found: {ref}")
    mime = mimetypes.guess_type(ref)[0] or "image/jpeg"
    with open(ref, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def raise_for_http_error(response: requests.Response, provider: str, moderation_check=None) -> None:
    """
    Map HTTP failures onto the provider error taxonomy.

    429 and 5xx are transient; other 4xx are terminal. ``moderation_check``
    may turn the error body into a ModerationFlaggedError.
    """
    if response.status_code < 400:
        return
    body = response.text[:500]
    if moderation_check is not None:
        moderation_check(body)
    message = f"{provider} HTTP {response.status_code}: {body}"
    if response.status_code == 429 or response.status_code >= 500:
        raise ProviderTransientError(message, provider=provider)
    raise ProviderTerminalError(message, provider=provider)
