"""
Speech Prompt Player: the "speaking" half of turn-taking.

``speak()`` resolves when playback ends, including when playback fails, so
a broken speaker never deadlocks the conversation. Only one utterance plays
at a time; starting a new one interrupts the one still in flight.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import pyttsx3

from shopvoice.config import settings

logger = logging.getLogger(__name__)


class SpeechPromptPlayer(ABC):
    """Base class for all text-to-speech playback backends."""

    def __init__(self) -> None:
        self._current: Optional[asyncio.Future] = None

    @abstractmethod
    async def _play(self, text: str) -> None:
        """Play ``text`` and return once playback has finished."""

    def _interrupt(self) -> None:
        """Stop the device-level utterance. Backends override if they can."""

    @property
    def is_speaking(self) -> bool:
        return self._current is not None and not self._current.done()

    async def speak(self, text: str) -> None:
        """Play an utterance, interrupting any utterance still in flight."""
        self.stop()
        task = asyncio.ensure_future(self._play(text))
        self._current = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            self._interrupt()
            task.cancel()
            raise
        finally:
            if self._current is task:
                self._current = None

        if task.cancelled():
            logger.debug("Utterance superseded: %r", text)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Playback failed for %r: %s", text, exc)

    def stop(self) -> None:
        """Interrupt the current utterance, if any."""
        if self.is_speaking:
            self._interrupt()
            self._current.cancel()


class Pyttsx3PromptPlayer(SpeechPromptPlayer):
    """Speaks through the platform TTS engine (SAPI5, NSSpeechSynthesizer, eSpeak)."""

    def __init__(
        self,
        rate: int = settings.speech.rate,
        volume: float = settings.speech.volume,
        voice_id: str = settings.speech.voice_id,
    ) -> None:
        super().__init__()
        self.rate = rate
        self.volume = volume
        self.voice_id = voice_id
        # pyttsx3 engines are not thread-safe; keep every call on one worker
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tts")
        self._engine = None

    def _get_engine(self):
        if self._engine is None:
            engine = pyttsx3.init()
            engine.setProperty("rate", self.rate)
            engine.setProperty("volume", self.volume)
            if self.voice_id:
                engine.setProperty("voice", self.voice_id)
            self._engine = engine
        return self._engine

    def _say(self, text: str) -> None:
        engine = self._get_engine()
        engine.say(text)
        engine.runAndWait()

    async def _play(self, text: str) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._say, text)

    def _interrupt(self) -> None:
        if self._engine is not None:
            self._engine.stop()

    def close(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False)


class ConsolePromptPlayer(SpeechPromptPlayer):
    """Prints prompts instead of speaking them. Used by the console demo."""

    def __init__(self, prefix: str = "[Assistant]") -> None:
        super().__init__()
        self.prefix = prefix
        self.spoken: list[str] = []

    async def _play(self, text: str) -> None:
        self.spoken.append(text)
        print(f"{self.prefix} {text}")
