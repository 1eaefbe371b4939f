"""
Transcription Gateway: speech-to-text over the shop backend's HTTP API.

The gateway makes exactly one request per call. Retrying is the
orchestrator's job and happens per turn: it re-prompts and re-records
instead of resubmitting the same audio.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from shopvoice.config import settings
from shopvoice.errors import TranscriptionFailed
from shopvoice.schemas.conversation_schema import RecordingResult

logger = logging.getLogger(__name__)

_EXTENSIONS = {
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
}


class Transcriber(ABC):
    """Anything that turns one recording into text."""

    @abstractmethod
    async def transcribe(self, recording: RecordingResult) -> str:
        """Return the recognised text. Raise ``TranscriptionFailed`` otherwise."""


class TranscriptionGateway(Transcriber):
    """Posts audio as multipart ``audio`` to ``/voice/transcribe``.

    Expected response: ``{"success": true, "transcript": "..."}``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str = settings.transcription.endpoint,
        timeout_sec: float = settings.transcription.timeout_sec,
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.timeout_sec = timeout_sec

    async def transcribe(self, recording: RecordingResult) -> str:
        ext = _EXTENSIONS.get(recording.mime_type, "wav")
        files = {"audio": (f"speech.{ext}", recording.audio, recording.mime_type)}
        logger.debug("Uploading %d bytes for transcription", recording.size_bytes)
        try:
            response = await self._client.post(
                self.endpoint, files=files, timeout=self.timeout_sec
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise TranscriptionFailed(
                f"Transcription service returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionFailed(f"Transcription service unreachable: {exc}") from exc
        except ValueError as exc:
            raise TranscriptionFailed("Transcription service returned invalid JSON") from exc

        if not isinstance(payload, dict) or not payload.get("success"):
            error = payload.get("error") if isinstance(payload, dict) else None
            raise TranscriptionFailed(error or "Transcription was not successful")

        transcript = (payload.get("transcript") or "").strip()
        if not transcript:
            raise TranscriptionFailed("Transcription was empty")
        return transcript
