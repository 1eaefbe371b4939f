"""
Shop voice entry point.

Runs a voice capture session against the real devices and the shop's HTTP
API, or the offline console demo for development.

Usage:
    Live voice:   python main.py voice
    Console mode: python main.py console [--scenario invoice]

While a live session is listening, press Enter to stop the recording early
or type ``c`` and Enter to cancel the session.
"""

import argparse
import asyncio
import logging
import sys
import threading

from shopvoice.config import settings

logger = logging.getLogger(__name__)


def _watch_keyboard(loop: asyncio.AbstractEventLoop, orchestrator) -> None:
    """Forward keyboard controls to the running session from a daemon thread."""

    def reader() -> None:
        for line in sys.stdin:
            command = line.strip().lower()
            if command in ("c", "cancel"):
                loop.call_soon_threadsafe(orchestrator.cancel)
            else:
                loop.call_soon_threadsafe(orchestrator.stop_listening)

    threading.Thread(target=reader, name="keyboard", daemon=True).start()


async def _run_voice_session(mode: str) -> None:
    """Start one session with the microphone, local TTS and the shop API."""
    from shopvoice.audio.capture import AudioCaptureController, SoundDeviceMicrophone
    from shopvoice.audio.prompt_player import Pyttsx3PromptPlayer
    from shopvoice.conversation.orchestrator import VoiceOrchestrator
    from shopvoice.tools.commit import CommitGateway
    from shopvoice.tools.shop_api import ShopApiClient, build_http_client
    from shopvoice.tools.transcription import TranscriptionGateway

    player = Pyttsx3PromptPlayer()
    async with build_http_client() as client:
        backend = ShopApiClient(client)
        orchestrator = VoiceOrchestrator(
            player=player,
            capture=AudioCaptureController(SoundDeviceMicrophone()),
            transcriber=TranscriptionGateway(client),
            backend=backend,
            commit_gateway=CommitGateway(backend, mode=mode),
        )
        _watch_keyboard(asyncio.get_running_loop(), orchestrator)
        try:
            session = await orchestrator.run()
        finally:
            player.close()

    logger.info("Session %s ended in %s", session.session_id, session.state.value)
    if session.commit_result and session.commit_result.pdf_path:
        logger.info("Invoice PDF: %s", session.commit_result.pdf_path)


def _run_voice_mode(mode: str) -> None:
    try:
        asyncio.run(_run_voice_session(mode))
    except KeyboardInterrupt:
        logger.info("Interrupted")


def _run_console_mode(scenario: str | None, mode: str) -> None:
    """Start the offline console demo (no devices or server required)."""
    from console_demo import run_interactive, run_scenario

    if scenario:
        run_scenario(scenario)
    else:
        run_interactive(mode)


def main() -> None:
    parser = argparse.ArgumentParser(description="Voice-guided service capture")
    sub = parser.add_subparsers(dest="command")

    voice = sub.add_parser("voice", help="Run a live session with microphone and speakers")
    voice.add_argument("--mode", choices=["invoice", "service_log"], default=settings.shop.commit_mode)

    console = sub.add_parser("console", help="Run the offline console demo")
    console.add_argument("--scenario", default=None, help="Auto-play a pre-scripted scenario")
    console.add_argument("--mode", choices=["invoice", "service_log"], default=settings.shop.commit_mode)

    args = parser.parse_args()
    if args.command == "console":
        _run_console_mode(args.scenario, args.mode)
    else:
        _run_voice_mode(getattr(args, "mode", settings.shop.commit_mode))


if __name__ == "__main__":
    main()
