"""
OpenAI-compatible chat completions adapters with image input:

- OpenAIFrameClassifier: yes/no "does this image show a minor" check
- OpenAIFrameJudge: picks the end-of-clip frame that best continues into
  the next segment's first frame
"""

from typing import Any, Dict, List, Optional

import requests

from ..config import get_settings
from ..exceptions import JudgeError, ProviderError, ProviderResponseError, ProviderTransientError
from ..logger import logger
from .base import FrameClassifier, FrameJudge, FrameJudgment, image_reference_to_url, raise_for_http_error
from .responses import parse_judgment

CLASSIFIER_PROMPT = (
    'Does this image contain any children, kids, toddlers, or minors? '
    'Respond with only "yes" or "no".'
)

JUDGE_PROMPT = """You are a film editor checking visual continuity between two shots.
You will see {count} candidate frames (numbered 1 to {count}, in chronological order)
taken from the last second of a clip, followed by the TARGET frame: the first frame
of the next clip.

Pick the candidate that would make the cut into the TARGET look most seamless:
matching subject position, pose, framing, lighting and motion.

Respond with JSON only:
{{
  "selectedFrameIndex": <1-based candidate number>,
  "selectedFrameIndex0Based": <0-based candidate index>,
  "similarityScore": <0.0-1.0>,
  "differences": ["<short difference>", ...],
  "reasoning": "<one or two sentences>"
}}"""


class _ChatClient:
    def __init__(
        self,
        model: str,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        cfg = get_settings().providers
        self.model = model
        self.api_key = api_key or cfg.openai_api_key
        self.base_url = (base_url or cfg.openai_api_base).rstrip("/")
        self.timeout = timeout or cfg.request_timeout
        self.session = session or requests.Session()

    def complete(self, content: List[Dict[str, Any]], max_tokens: int, json_mode: bool = False) -> str:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(
                f"{self.base_url}/chat/completions", json=payload, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.Timeout as e:
            raise ProviderTransientError(f"Vision request timeout ({self.timeout}s)", "openai") from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderTransientError(f"Cannot connect to vision API: {e}", "openai") from e

        raise_for_http_error(response, "openai")
        try:
            data = response.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(f"Unrecognized chat completion: {response.text[:200]}", "openai") from e


def _image_part(ref: str) -> Dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": image_reference_to_url(ref)}}


class OpenAIFrameClassifier(FrameClassifier):
    name = "openai-classifier"

    def __init__(self, model: Optional[str] = None, **client_kwargs):
        self.client = _ChatClient(model or get_settings().providers.classifier_model, **client_kwargs)

    def contains_minor(self, image_url: str) -> bool:
        if not image_url:
            return False
        if not self.client.api_key:
            logger.warning("[Classifier] OPENAI_API_KEY not set, skipping content check")
            return False
        try:
            answer = self.client.complete(
                [{"type": "text", "text": CLASSIFIER_PROMPT}, _image_part(image_url)],
                max_tokens=10,
            )
        except (ProviderError, OSError) as e:
            logger.warning(f"[Classifier] Content check failed, assuming no minors: {e}")
            return False
        return answer.strip().lower().startswith("yes")


class OpenAIFrameJudge(FrameJudge):
    name = "openai-judge"

    def __init__(self, model: Optional[str] = None, **client_kwargs):
        self.client = _ChatClient(model or get_settings().providers.judge_model, **client_kwargs)

    def select_best_frame(self, candidates: List[str], target: str) -> FrameJudgment:
        if not candidates:
            raise JudgeError("No candidate frames to judge")
        content: List[Dict[str, Any]] = [{"type": "text", "text": JUDGE_PROMPT.format(count=len(candidates))}]
        for i, frame in enumerate(candidates, start=1):
            content.append({"type": "text", "text": f"Candidate {i}:"})
            content.append(_image_part(frame))
        content.append({"type": "text", "text": "TARGET:"})
        content.append(_image_part(target))

        try:
            answer = self.client.complete(content, max_tokens=600, json_mode=True)
            return parse_judgment(answer, candidate_count=len(candidates))
        except (ProviderError, OSError) as e:
            raise JudgeError(f"Frame judge failed: {e}") from e
