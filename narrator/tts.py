"""Module 4 — Speech generation backend client.

POST /api/experiences/{experience}/lessons/{lesson}/tts returns
{audioBase64, duration, wordTimings: [{word, startTime, endTime}]}.
"""
import logging
from typing import Optional

import httpx

from .config import TTS_HOST, TTS_TIMEOUT, TTS_EXPERIENCE_ID, TTS_VOICE_ID
from .errors import GenerationError
from .models import Session

logger = logging.getLogger(__name__)


async def check_server(host: str = TTS_HOST) -> bool:
    """GET /api/health — returns True if the backend is up."""
    try:
        async with httpx.AsyncClient(timeout=5) as client:
            r = await client.get(f"{host}/api/health")
            return r.status_code == 200
    except httpx.HTTPError:
        return False


def _error_message(r: httpx.Response) -> str:
    """Surface the backend's {error|message} field, else the raw body."""
    try:
        data = r.json()
    except ValueError:
        return r.text[:200] or r.reason_phrase
    if isinstance(data, dict):
        return str(data.get("error") or data.get("message") or r.reason_phrase)
    return r.text[:200]


class SpeechClient:
    def __init__(
        self,
        host: str = TTS_HOST,
        experience_id: str = TTS_EXPERIENCE_ID,
        voice_id: str = TTS_VOICE_ID,
        timeout: float = TTS_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.host = host.rstrip("/")
        self.experience_id = experience_id
        self.voice_id = voice_id
        self.timeout = timeout
        self._transport = transport

    def url_for(self, lesson_id: str) -> str:
        return f"{self.host}/api/experiences/{self.experience_id}/lessons/{lesson_id}/tts"

    async def generate(self, lesson_id: str) -> Session:
        """Ask the backend for speech + word timings for one lesson."""
        payload = {"voiceId": self.voice_id} if self.voice_id else {}
        url = self.url_for(lesson_id)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.post(url, json=payload)
                if not r.is_success:
                    raise GenerationError(f"{r.status_code}: {_error_message(r)}", status=r.status_code)
                data = r.json()
        except httpx.TimeoutException as e:
            raise GenerationError(f"Speech generation timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Speech backend HTTP error: {e}") from e
        except ValueError as e:
            raise GenerationError(f"Speech backend returned invalid JSON: {e}") from e

        session = Session.from_response(lesson_id, data)
        logger.info(
            "Speech generated for %s: %.1fs, %d words with timings",
            lesson_id, session.duration, len(session.timings),
        )
        return session
