"""
External provider contracts and reference HTTP adapters.
"""

from .base import (
    FrameClassifier,
    FrameJudge,
    FrameJudgment,
    PredictionFailed,
    PredictionPending,
    PredictionState,
    PredictionSucceeded,
    SpeechProvider,
    VideoProvider,
    VideoRequest,
)

__all__ = [
    "FrameClassifier",
    "FrameJudge",
    "FrameJudgment",
    "PredictionFailed",
    "PredictionPending",
    "PredictionState",
    "PredictionSucceeded",
    "SpeechProvider",
    "VideoProvider",
    "VideoRequest",
]
