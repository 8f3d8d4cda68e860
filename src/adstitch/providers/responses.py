"""
Explicit parsers for provider response payloads.

Each parser accepts a narrow set of known shapes and raises
ProviderResponseError on anything else; nothing silently defaults.
"""

import json
import re
from typing import Any, List, Optional

from ..exceptions import ModerationFlaggedError, ProviderResponseError
from .base import (
    FrameJudgment,
    PredictionFailed,
    PredictionPending,
    PredictionState,
    PredictionSucceeded,
)

PENDING_STATUSES = {"starting", "processing"}
FAILED_STATUSES = {"failed", "canceled"}

MEDIA_URL_KEYS = ("url", "videoUrl", "video_url", "output")

MODERATION_CODE = "E005"
MODERATION_PATTERN = re.compile(r"\b(flagged|sensitive)\b", re.IGNORECASE)
ERROR_CODE_PATTERN = re.compile(r"\b(E\d{3,4})\b")


def is_moderation_error(message: Optional[str], code: Optional[str] = None) -> bool:
    """True for provider errors coded E005 or worded as flagged/sensitive."""
    if code and code.upper() == MODERATION_CODE:
        return True
    if not message:
        return False
    return MODERATION_CODE in message or MODERATION_PATTERN.search(message) is not None


def raise_if_moderation(message: str, provider: str = "video", prediction_id: Optional[str] = None) -> None:
    if is_moderation_error(message):
        raise ModerationFlaggedError(message, provider=provider, prediction_id=prediction_id)


def parse_prediction_id(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("id", "predictionId", "prediction_id"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
    raise ProviderResponseError(f"Missing prediction id in response: {_preview(payload)}")


def parse_media_output(output: Any) -> str:
    """
    Media URL from a prediction ``output`` field.

    Known shapes: a URL string, a non-empty list whose first item is a known
    shape, or an object with one of url/videoUrl/video_url/output.
    """
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list) and output:
        return parse_media_output(output[0])
    if isinstance(output, dict):
        for key in MEDIA_URL_KEYS:
            if key in output and output[key]:
                return parse_media_output(output[key])
    raise ProviderResponseError(f"Unrecognized media output shape: {_preview(output)}")


def _error_text(error: Any) -> str:
    if error is None:
        return "Unknown error"
    if isinstance(error, str):
        return error
    if isinstance(error, dict):
        return str(error.get("message") or error.get("detail") or json.dumps(error))
    return str(error)


def parse_prediction(payload: Any) -> PredictionState:
    """Prediction status payload → PredictionPending | Succeeded | Failed."""
    if not isinstance(payload, dict):
        raise ProviderResponseError(f"Prediction payload is not an object: {_preview(payload)}")
    prediction_id = parse_prediction_id(payload)
    status = payload.get("status")

    if status in PENDING_STATUSES:
        return PredictionPending(prediction_id=prediction_id, status=status)
    if status == "succeeded":
        output = payload.get("output")
        url = parse_media_output(output) if output else None
        return PredictionSucceeded(prediction_id=prediction_id, output_url=url)
    if status in FAILED_STATUSES:
        message = _error_text(payload.get("error"))
        code = payload.get("error_code")
        if not code:
            match = ERROR_CODE_PATTERN.search(message)
            code = match.group(1) if match else None
        return PredictionFailed(prediction_id=prediction_id, error=message, error_code=code, status=status)

    raise ProviderResponseError(f"Unknown prediction status {status!r}: {_preview(payload)}")


def strip_code_fence(text: str) -> str:
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_judgment(payload: Any, candidate_count: Optional[int] = None) -> FrameJudgment:
    """
    Frame-judge answer → FrameJudgment.

    Accepts a JSON string, an object whose ``content`` is a JSON string, or
    the decoded object itself. ``selectedFrameIndex0Based`` wins; a bare
    ``selectedFrameIndex`` is 1-based.
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(strip_code_fence(payload))
        except json.JSONDecodeError as e:
            raise ProviderResponseError(f"Judge returned invalid JSON: {e}") from e
    elif isinstance(payload, dict) and isinstance(payload.get("content"), str) and "selectedFrameIndex" not in payload:
        return parse_judgment(payload["content"], candidate_count)

    if not isinstance(payload, dict):
        raise ProviderResponseError(f"Unrecognized judge response: {_preview(payload)}")

    if "selectedFrameIndex0Based" in payload:
        index = payload["selectedFrameIndex0Based"]
    elif "selectedFrameIndex" in payload:
        index = payload["selectedFrameIndex"]
        index = index - 1 if isinstance(index, int) else index
    else:
        raise ProviderResponseError(f"Judge response has no frame index: {_preview(payload)}")

    if not isinstance(index, int) or isinstance(index, bool):
        raise ProviderResponseError(f"Judge frame index is not an integer: {index!r}")
    if index < 0 or (candidate_count is not None and index >= candidate_count):
        raise ProviderResponseError(f"Judge frame index {index} out of range")

    try:
        score = float(payload.get("similarityScore", 0.0))
    except (TypeError, ValueError) as e:
        raise ProviderResponseError(f"Judge similarity is not a number: {payload.get('similarityScore')!r}") from e

    differences: List[str] = [str(d) for d in payload.get("differences") or []]
    return FrameJudgment(
        selected_index=index,
        similarity_score=max(0.0, min(1.0, score)),
        differences=differences,
        reasoning=str(payload.get("reasoning") or ""),
    )


def _preview(value: Any, limit: int = 300) -> str:
    try:
        text = json.dumps(value)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:limit]
