"""Shared test fixtures and fakes for devices, transcription and the shop."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from typing import Optional, Union

import pytest

from shopvoice.audio.capture import AudioCaptureController, MicrophoneBackend
from shopvoice.audio.prompt_player import SpeechPromptPlayer
from shopvoice.conversation.orchestrator import VoiceOrchestrator
from shopvoice.conversation.state_machine import ConversationStateMachine
from shopvoice.errors import TranscriptionFailed
from shopvoice.schemas.conversation_schema import RecordingResult
from shopvoice.tools.commit import CommitGateway
from shopvoice.tools.shop_directory import InMemoryShopDirectory
from shopvoice.tools.transcription import Transcriber

FAST_CEILING_SEC = 0.01


class FakeMicrophone(MicrophoneBackend):
    """Records open/close/abort calls into a shared event log."""

    def __init__(
        self,
        events: Optional[list] = None,
        payload_size: int = 4096,
        deny: bool = False,
        broken: bool = False,
    ) -> None:
        self.events = events if events is not None else []
        self.payload_size = payload_size
        self.deny = deny
        self.broken = broken
        self.is_open = False

    def open(self) -> None:
        if self.deny:
            raise PermissionError("Microphone permission denied")
        if self.broken:
            raise OSError("No input device")
        self.is_open = True
        self.events.append("mic_open")

    def close(self) -> bytes:
        self.is_open = False
        self.events.append("mic_close")
        return b"\x01" * self.payload_size

    def abort(self) -> None:
        self.is_open = False
        self.events.append("mic_abort")


class FakePlayer(SpeechPromptPlayer):
    """Speaks instantly (one loop tick) and logs start/end of each utterance.

    An utterance starting with ``hold_prefix`` stays in flight until
    ``release`` is set, so a test can act while that sentence is playing.
    """

    def __init__(self, events: Optional[list] = None, hold_prefix: Optional[str] = None) -> None:
        super().__init__()
        self.events = events if events is not None else []
        self.spoken: list[str] = []
        self.interrupts = 0
        self.hold_prefix = hold_prefix
        self.held = asyncio.Event()
        self.release = asyncio.Event()

    async def _play(self, text: str) -> None:
        self.events.append(("speak_start", text))
        if self.hold_prefix and text.startswith(self.hold_prefix):
            self.held.set()
            await self.release.wait()
        else:
            await asyncio.sleep(0)
        self.spoken.append(text)
        self.events.append(("speak_end", text))

    def _interrupt(self) -> None:
        self.interrupts += 1


class FakeTranscriber(Transcriber):
    """Returns scripted transcripts; an exception instance in the script is raised."""

    def __init__(self, results: list[Union[str, Exception]]) -> None:
        self._results = deque(results)
        self.calls = 0

    async def transcribe(self, recording: RecordingResult) -> str:
        self.calls += 1
        if not self._results:
            raise TranscriptionFailed("Script exhausted")
        result = self._results.popleft()
        if isinstance(result, Exception):
            raise result
        return result


@dataclass
class Rig:
    """An orchestrator wired to fakes, with handles on every fake."""

    orchestrator: VoiceOrchestrator
    directory: InMemoryShopDirectory
    microphone: FakeMicrophone
    capture: AudioCaptureController
    player: FakePlayer
    transcriber: FakeTranscriber
    events: list = field(default_factory=list)


def build_rig(
    results: list[Union[str, Exception]],
    mode: str = "invoice",
    max_retries: int = 2,
    ceiling_sec: float = FAST_CEILING_SEC,
    directory: Optional[InMemoryShopDirectory] = None,
    microphone: Optional[FakeMicrophone] = None,
    hold_prefix: Optional[str] = None,
) -> Rig:
    events: list = []
    directory = directory or InMemoryShopDirectory()
    if microphone is None:
        microphone = FakeMicrophone(events)
    else:
        microphone.events = events
    capture = AudioCaptureController(microphone, max_recording_sec=ceiling_sec, min_audio_bytes=1000)
    player = FakePlayer(events, hold_prefix=hold_prefix)
    transcriber = FakeTranscriber(results)
    orchestrator = VoiceOrchestrator(
        player=player,
        capture=capture,
        transcriber=transcriber,
        backend=directory,
        commit_gateway=CommitGateway(directory, mode=mode, tax_rate=0.0825, download_pdf=False),
        max_retries=max_retries,
    )
    return Rig(orchestrator, directory, microphone, capture, player, transcriber, events)


@pytest.fixture
def state_machine():
    return ConversationStateMachine()


@pytest.fixture
def directory():
    return InMemoryShopDirectory()


@pytest.fixture
def microphone():
    return FakeMicrophone()


@pytest.fixture
def capture(microphone):
    return AudioCaptureController(microphone, max_recording_sec=FAST_CEILING_SEC, min_audio_bytes=1000)
