"""
Replicate-style prediction API adapter for video generation.

    POST {base}/models/{owner}/{name}/predictions   {"input": {...}}
    GET  {base}/predictions/{id}
"""

from functools import partial
from typing import Any, Dict, Optional

import requests

from ..config import get_settings
from ..exceptions import ProviderResponseError, ProviderTerminalError, ProviderTransientError
from ..logger import logger
from .base import (
    PredictionFailed,
    PredictionState,
    PredictionSucceeded,
    VideoProvider,
    VideoRequest,
    image_reference_to_url,
    raise_for_http_error,
)
from .responses import parse_media_output, parse_prediction, parse_prediction_id, raise_if_moderation


class ReplicateVideoProvider(VideoProvider):
    name = "replicate"

    def __init__(
        self,
        api_token: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        cfg = get_settings().providers
        self.api_token = api_token or cfg.replicate_api_token
        self.model = model or cfg.video_model
        self.base_url = (base_url or cfg.replicate_base_url).rstrip("/")
        self.timeout = timeout or cfg.request_timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, url: str, prediction_id: Optional[str] = None, **kwargs) -> Any:
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise ProviderTransientError(f"Replicate request timeout ({self.timeout}s)", self.name, prediction_id) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderTransientError(f"Cannot connect to Replicate: {e}", self.name, prediction_id) from e

        raise_for_http_error(
            response,
            self.name,
            moderation_check=partial(raise_if_moderation, provider=self.name, prediction_id=prediction_id),
        )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderResponseError(f"Replicate returned non-JSON body: {response.text[:200]}", self.name) from e

    def build_input(self, request: VideoRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "prompt": request.prompt,
            "duration": int(round(request.duration)) or 1,
            "aspect_ratio": request.aspect_ratio,
        }
        if request.first_frame_image:
            payload["first_frame_image"] = image_reference_to_url(request.first_frame_image)
        if request.last_frame_image:
            payload["last_frame_image"] = image_reference_to_url(request.last_frame_image)
        if request.subject_reference:
            payload["subject_reference"] = image_reference_to_url(request.subject_reference)
        if request.negative_prompt:
            payload["negative_prompt"] = request.negative_prompt
        if request.resolution:
            payload["resolution"] = request.resolution
        if request.seed is not None:
            payload["seed"] = request.seed
        return payload

    def create(self, request: VideoRequest) -> str:
        model = request.model or self.model
        url = f"{self.base_url}/models/{model}/predictions"
        data = self._request("POST", url, json={"input": self.build_input(request)})
        prediction_id = parse_prediction_id(data)
        logger.debug(f"[Replicate] Prediction {prediction_id} created on {model}")
        return prediction_id

    def poll(self, prediction_id: str) -> PredictionState:
        data = self._request("GET", f"{self.base_url}/predictions/{prediction_id}", prediction_id)
        return parse_prediction(data)

    def fetch_result(self, prediction_id: str) -> str:
        data = self._request("GET", f"{self.base_url}/predictions/{prediction_id}", prediction_id)
        state = parse_prediction(data)
        if isinstance(state, PredictionFailed):
            raise ProviderTerminalError(state.error, self.name, prediction_id)
        if not isinstance(state, PredictionSucceeded):
            raise ProviderResponseError(f"Prediction {prediction_id} is not finished ({state.status})", self.name, prediction_id)
        if state.output_url:
            return state.output_url
        return parse_media_output(data.get("output"))
