from shopvoice.conversation.line_items import add_item, total
from shopvoice.conversation.orchestrator import VoiceOrchestrator
from shopvoice.conversation.session import ConversationSession
from shopvoice.conversation.state_machine import (
    ConversationState,
    ConversationStateMachine,
    InvalidTransitionError,
    TransitionTrigger,
)

__all__ = [
    "VoiceOrchestrator",
    "ConversationSession",
    "ConversationStateMachine",
    "ConversationState",
    "TransitionTrigger",
    "InvalidTransitionError",
    "add_item",
    "total",
]
