"""
Offline console demo: runs a full voice capture session without a microphone,
speakers or a shop server.

Prompts are printed instead of spoken, the "microphone" hands back a
placeholder recording, and the transcript of each turn is either taken from
a pre-scripted scenario or typed at the keyboard. Customers, vehicles and
service history come from the in-memory shop directory.

Usage:
    python console_demo.py
    python console_demo.py --scenario invoice
    python console_demo.py --scenario walk
"""

import argparse
import asyncio
import logging
from collections import deque
from typing import Iterable, Optional

from shopvoice.audio.capture import AudioCaptureController, MicrophoneBackend
from shopvoice.audio.prompt_player import ConsolePromptPlayer
from shopvoice.config import settings
from shopvoice.conversation.orchestrator import VoiceOrchestrator
from shopvoice.conversation.session import ConversationSession
from shopvoice.errors import TranscriptionFailed
from shopvoice.schemas.conversation_schema import RecordingResult
from shopvoice.tools.commit import CommitGateway
from shopvoice.tools.shop_directory import InMemoryShopDirectory
from shopvoice.tools.transcription import Transcriber

BLUE = "\033[94m"
GREEN = "\033[92m"
RED = "\033[91m"
DIM = "\033[2m"
RESET = "\033[0m"
BOLD = "\033[1m"

# Each console turn "records" for this long before the transcript is read
DEMO_RECORDING_SEC = 0.05


class PlaceholderMicrophone(MicrophoneBackend):
    """Pretends to record; returns silence large enough to pass the size check."""

    def __init__(self, size: int = 4096) -> None:
        self.size = size

    def open(self) -> None:
        pass

    def close(self) -> bytes:
        return b"\x00" * self.size

    def abort(self) -> None:
        pass


class ScriptedTranscriber(Transcriber):
    """Returns scripted lines in order, or asks the keyboard once the script runs out."""

    def __init__(self, lines: Optional[Iterable[str]] = None, interactive: bool = False) -> None:
        self._lines = deque(lines or [])
        self.interactive = interactive

    async def transcribe(self, recording: RecordingResult) -> str:
        if self._lines:
            text = self._lines.popleft()
            print(f"{BLUE}[Mechanic]{RESET} {text}")
        elif self.interactive:
            text = await asyncio.to_thread(input, f"{BLUE}[Mechanic] {RESET}")
        else:
            text = ""
        if not text.strip():
            raise TranscriptionFailed("Nothing was said")
        return text.strip()


class ConsoleSession:
    """Wires the orchestrator to console stand-ins for every device."""

    SCENARIOS: dict[str, tuple[str, list[str]]] = {
        "invoice": ("invoice", [
            "John Smith",
            "Oil change one hour",
            "eighty dollars",
            "no",
        ]),
        "walk": ("invoice", [
            "Sarah Johnson",
            "the Camry",
            "one hour",
            "$70",
            "done",
            "yes",
            "Wiper blades",
            "half an hour",
            "twenty",
            "no",
        ]),
        "service-log": ("service_log", [
            "john smith",
            "We did brake pads two and a half hours",
            "one fifty",
            "no thanks",
        ]),
        "no-match": ("invoice", [
            "Bob Nobody",
        ]),
        "no-items": ("invoice", [
            "Sarah Johnson",
            "the Ford",
            "done",
            "no",
        ]),
    }

    def __init__(
        self,
        lines: Optional[list[str]] = None,
        mode: str = settings.shop.commit_mode,
        interactive: bool = False,
    ) -> None:
        self.directory = InMemoryShopDirectory()
        self.player = ConsolePromptPlayer(prefix=f"{GREEN}{BOLD}[Assistant]{RESET}")
        self.capture = AudioCaptureController(
            PlaceholderMicrophone(), max_recording_sec=DEMO_RECORDING_SEC
        )
        self.orchestrator = VoiceOrchestrator(
            player=self.player,
            capture=self.capture,
            transcriber=ScriptedTranscriber(lines, interactive=interactive),
            backend=self.directory,
            commit_gateway=CommitGateway(self.directory, mode=mode, download_pdf=False),
        )

    async def run_async(self) -> ConversationSession:
        return await self.orchestrator.run()

    def run(self) -> ConversationSession:
        session = asyncio.run(self.run_async())
        self.report(session)
        return session

    def report(self, session: ConversationSession) -> None:
        print(f"\n{BOLD}{'=' * 60}{RESET}")
        color = GREEN if session.commit_result else RED
        print(f"{BOLD}  Outcome: {color}{session.state.value}{RESET}")
        for item in session.line_items:
            print(f"{DIM}  - {item.name}: {item.hours:g} h, ${item.price:.2f}{RESET}")
        if session.commit_result:
            result = session.commit_result
            print(f"{DIM}  Committed {result.kind} {result.reference or result.record_id}{RESET}")
        if session.error_message:
            print(f"{DIM}  Error: {session.error_message}{RESET}")
        print(f"{DIM}  State trace: {' -> '.join(session.machine.get_state_trace())}{RESET}")
        print(f"{BOLD}{'=' * 60}{RESET}")


def run_scenario(name: str) -> Optional[ConversationSession]:
    """Auto-play a pre-scripted scenario for demo purposes."""
    if name not in ConsoleSession.SCENARIOS:
        print(f"{RED}Unknown scenario: {name}{RESET}")
        return None
    mode, lines = ConsoleSession.SCENARIOS[name]
    print(f"\n{BOLD}{'=' * 60}{RESET}")
    print(f"{BOLD}  SHOP VOICE - Scenario: {name} ({mode}){RESET}")
    print(f"{BOLD}  Shop: {settings.shop.name}{RESET}")
    print(f"{BOLD}{'=' * 60}{RESET}\n")
    return ConsoleSession(lines, mode=mode).run()


def run_interactive(mode: str = settings.shop.commit_mode) -> ConversationSession:
    print(f"\n{BOLD}  SHOP VOICE - console mode ({mode}). Type what you would say.{RESET}")
    print(f"{DIM}  Customers: John Smith, Sarah Johnson, Maria Garcia, David Lee{RESET}\n")
    return ConsoleSession(mode=mode, interactive=True).run()


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Offline console demo")
    parser.add_argument(
        "--scenario",
        choices=sorted(ConsoleSession.SCENARIOS),
        default=None,
        help="Auto-play a pre-scripted scenario instead of interactive mode",
    )
    parser.add_argument(
        "--mode",
        choices=["invoice", "service_log"],
        default=settings.shop.commit_mode,
        help="What to create at the end of an interactive session",
    )
    args = parser.parse_args(argv)

    logging.getLogger().setLevel(logging.WARNING)
    if args.scenario:
        run_scenario(args.scenario)
    else:
        run_interactive(args.mode)


if __name__ == "__main__":
    main()
