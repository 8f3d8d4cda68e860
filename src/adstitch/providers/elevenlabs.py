"""ElevenLabs-style text-to-speech adapter."""

from typing import Optional

import requests

from ..config import get_settings
from ..exceptions import ProviderResponseError, ProviderTransientError
from .base import SpeechProvider, raise_for_http_error


class ElevenLabsSpeechProvider(SpeechProvider):
    name = "elevenlabs"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        cfg = get_settings().providers
        self.api_key = api_key or cfg.elevenlabs_api_key
        self.model_id = model_id or cfg.tts_model
        self.base_url = (base_url or cfg.elevenlabs_base_url).rstrip("/")
        self.timeout = timeout or cfg.request_timeout
        self.session = session or requests.Session()

    def synthesize(self, text: str, voice: str) -> bytes:
        url = f"{self.base_url}/text-to-speech/{voice}"
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        try:
            response = self.session.post(
                url,
                json={"text": text, "model_id": self.model_id},
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise ProviderTransientError(f"ElevenLabs request timeout ({self.timeout}s)", self.name) from e
        except requests.exceptions.ConnectionError as e:
            raise ProviderTransientError(f"Cannot connect to ElevenLabs: {e}", self.name) from e

        raise_for_http_error(response, self.name)
        if not response.content:
            raise ProviderResponseError("Voice synthesis returned no audio data", self.name)
        return response.content
