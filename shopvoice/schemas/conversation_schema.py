"""Transcript and recording schemas for one voice session."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Speaker(str, Enum):
    ASSISTANT = "assistant"
    USER = "user"
    SYSTEM = "system"


class SessionOutcome(str, Enum):
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


class TranscriptTurn(BaseModel):
    """A single spoken line in the session transcript."""

    speaker: Speaker
    text: str
    timestamp: float
    state: Optional[str] = None


class RecordingResult(BaseModel):
    """Audio captured by one listening turn. Discarded after transcription."""
    model_config = ConfigDict(frozen=True)

    audio: bytes = Field(repr=False)
    duration_ms: int = Field(ge=0)
    size_bytes: int = Field(ge=0)
    mime_type: str = "audio/wav"
