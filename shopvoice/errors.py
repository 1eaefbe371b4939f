"""
Error taxonomy for the voice capture flow.

Adapters raise these; the orchestrator catches every ``VoiceFlowError``,
speaks ``spoken_message`` and moves the session back to idle (or to
cancelled). None of them escape ``VoiceOrchestrator.run``.
"""


class VoiceFlowError(Exception):
    """Base class for all failures the orchestrator handles locally."""

    spoken_message = "Something went wrong. Please try again."
    recoverable = False

    def __init__(self, message: str = "", spoken_message: str | None = None) -> None:
        super().__init__(message or self.spoken_message)
        if spoken_message is not None:
            self.spoken_message = spoken_message


class PermissionDenied(VoiceFlowError):
    """Microphone access was refused by the user or the OS."""

    spoken_message = "I don't have permission to use the microphone."


class DeviceUnavailable(VoiceFlowError):
    """The microphone could not be opened or is already in use."""

    spoken_message = "The microphone is not available right now."


class TooShort(VoiceFlowError):
    """Captured audio is below the minimum useful size."""

    spoken_message = "That was too short. Please speak louder or longer."
    recoverable = True


class CaptureCancelled(VoiceFlowError):
    """The recording was cancelled by an explicit user action."""

    spoken_message = "Cancelled."


class TranscriptionFailed(VoiceFlowError):
    """The speech-to-text service failed or returned no text."""

    spoken_message = "Sorry, I couldn't understand the audio. Please start again."
    recoverable = True


class NoEntityMatch(VoiceFlowError):
    """A spoken customer name or vehicle description matched nothing."""

    spoken_message = "Sorry, I couldn't find a match. Please try again."


class CommitFailed(VoiceFlowError):
    """The backend rejected the final record or could not be reached."""

    spoken_message = "Sorry, I couldn't save the record. Please try again."


class BackendUnavailable(VoiceFlowError):
    """Customer, vehicle or price data could not be loaded."""

    spoken_message = "I couldn't reach the shop system. Please try again later."
