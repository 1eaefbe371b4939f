"""
Audio Capture Controller: owns the microphone for one bounded recording.

Exactly one recording may hold the microphone at a time. The device is
released on every exit path: explicit stop, the recording ceiling timer,
an explicit cancel, an error, or cancellation of the awaiting task.

Usage:
    controller = AudioCaptureController(SoundDeviceMicrophone())
    recording = await controller.capture()   # stops itself after the ceiling
"""

import asyncio
import io
import logging
import time
import uuid
import wave
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from shopvoice.config import settings
from shopvoice.errors import CaptureCancelled, DeviceUnavailable, PermissionDenied, TooShort
from shopvoice.schemas.conversation_schema import RecordingResult

logger = logging.getLogger(__name__)


class MicrophoneBackend(ABC):
    """Device-level recorder. ``open`` acquires, ``close``/``abort`` release."""

    @abstractmethod
    def open(self) -> None:
        """Acquire the device and start buffering. Raise ``PermissionError`` if refused."""

    @abstractmethod
    def close(self) -> bytes:
        """Stop buffering, release the device and return the encoded audio."""

    @abstractmethod
    def abort(self) -> None:
        """Release the device and discard anything buffered."""


class SoundDeviceMicrophone(MicrophoneBackend):
    """Records 16-bit PCM through PortAudio and encodes it as WAV."""

    def __init__(
        self,
        sample_rate: int = settings.capture.sample_rate,
        channels: int = settings.capture.channels,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self._stream = None
        self._frames: list[np.ndarray] = []

    def open(self) -> None:
        # Lazy import so machines without PortAudio can still run the tests
        import sounddevice as sd

        self._frames = []
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                callback=self._on_audio,
            )
            self._stream.start()
        except sd.PortAudioError as exc:
            self._stream = None
            if "permission" in str(exc).lower():
                raise PermissionError(str(exc)) from exc
            raise

    def _on_audio(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("Input stream status: %s", status)
        self._frames.append(indata.copy())

    def close(self) -> bytes:
        self._shutdown()
        if not self._frames:
            return b""
        pcm = np.concatenate(self._frames)
        self._frames = []
        return self._pcm_to_wav(pcm)

    def abort(self) -> None:
        self._shutdown()
        self._frames = []

    def _shutdown(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()

    def _pcm_to_wav(self, pcm: np.ndarray) -> bytes:
        """Convert int16 PCM array to WAV bytes."""
        buf = io.BytesIO()
        with wave.open(buf, "wb") as wf:
            wf.setnchannels(self.channels)
            wf.setsampwidth(2)  # 16-bit
            wf.setframerate(self.sample_rate)
            wf.writeframes(pcm.tobytes())
        return buf.getvalue()


@dataclass(eq=False)
class RecordingHandle:
    """One in-flight recording. Finished by stop, the ceiling, or cancel."""

    id: str
    started_at: float
    stop_requested: asyncio.Event = field(default_factory=asyncio.Event)
    timer: Optional[asyncio.TimerHandle] = None
    cancelled: bool = False
    timed_out: bool = False

    def request_stop(self) -> None:
        self.stop_requested.set()

    def _on_ceiling(self) -> None:
        self.timed_out = True
        self.request_stop()

    async def wait(self) -> None:
        await self.stop_requested.wait()


class AudioCaptureController:
    """Bounded, exclusive microphone recording."""

    def __init__(
        self,
        backend: MicrophoneBackend,
        max_recording_sec: float = settings.capture.max_recording_sec,
        min_audio_bytes: int = settings.capture.min_audio_bytes,
    ) -> None:
        self._backend = backend
        self.max_recording_sec = max_recording_sec
        self.min_audio_bytes = min_audio_bytes
        self._active: Optional[RecordingHandle] = None
        self.acquisitions = 0
        self.releases = 0

    @property
    def is_recording(self) -> bool:
        return self._active is not None

    def start_capture(self) -> RecordingHandle:
        """Acquire the microphone and arm the recording ceiling.

        Must be called from a running event loop.

        Raises:
            DeviceUnavailable: If another recording holds the device or it fails to open.
            PermissionDenied: If microphone access was refused.
        """
        if self._active is not None:
            raise DeviceUnavailable("Microphone is already recording")
        loop = asyncio.get_running_loop()
        try:
            self._backend.open()
        except PermissionError as exc:
            raise PermissionDenied(str(exc) or "Microphone permission denied") from exc
        except Exception as exc:
            raise DeviceUnavailable(f"Could not open microphone: {exc}") from exc

        handle = RecordingHandle(id=uuid.uuid4().hex[:8], started_at=time.monotonic())
        handle.timer = loop.call_later(self.max_recording_sec, handle._on_ceiling)
        self._active = handle
        self.acquisitions += 1
        logger.debug("Recording %s started (ceiling %.1fs)", handle.id, self.max_recording_sec)
        return handle

    def stop(self, handle: RecordingHandle) -> RecordingResult:
        """Release the microphone and return what was recorded.

        Raises:
            TooShort: If the buffer is below ``min_audio_bytes``.
            DeviceUnavailable: If the handle is not the active recording or the device failed.
        """
        self._ensure_active(handle)
        try:
            audio = self._backend.close()
        except Exception as exc:
            raise DeviceUnavailable(f"Microphone failed while stopping: {exc}") from exc
        finally:
            self._release(handle)

        duration_ms = int((time.monotonic() - handle.started_at) * 1000)
        size = len(audio)
        logger.debug(
            "Recording %s stopped after %dms (%d bytes%s)",
            handle.id, duration_ms, size, ", ceiling reached" if handle.timed_out else "",
        )
        if size < self.min_audio_bytes:
            raise TooShort(f"Recording was {size} bytes, need at least {self.min_audio_bytes}")
        return RecordingResult(audio=audio, duration_ms=duration_ms, size_bytes=size)

    def cancel(self, handle: RecordingHandle) -> None:
        """Release the microphone immediately and discard the audio. Idempotent."""
        if handle is not self._active:
            return
        handle.cancelled = True
        try:
            self._backend.abort()
        finally:
            self._release(handle)
            handle.request_stop()
        logger.debug("Recording %s cancelled", handle.id)

    def request_stop(self) -> None:
        """End the active recording early; the captured audio is kept."""
        if self._active is not None:
            self._active.request_stop()

    def cancel_active(self) -> None:
        """Cancel whatever recording currently holds the microphone."""
        if self._active is not None:
            self.cancel(self._active)

    async def capture(self) -> RecordingResult:
        """Record until stopped, cancelled, or the ceiling fires.

        Raises:
            CaptureCancelled: If the recording was cancelled.
        """
        handle = self.start_capture()
        try:
            await handle.wait()
            if handle.cancelled:
                raise CaptureCancelled(f"Recording {handle.id} was cancelled")
            return self.stop(handle)
        finally:
            if handle is self._active:
                self.cancel(handle)

    def _ensure_active(self, handle: RecordingHandle) -> None:
        if handle is not self._active:
            raise DeviceUnavailable(f"Recording {handle.id} is not active")

    def _release(self, handle: RecordingHandle) -> None:
        if handle.timer is not None:
            handle.timer.cancel()
        self._active = None
        self.releases += 1
