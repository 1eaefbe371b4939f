"""Per-session conversation data owned by the orchestrator."""

import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from shopvoice.conversation.state_machine import ConversationState, ConversationStateMachine
from shopvoice.schemas.conversation_schema import SessionOutcome, Speaker, TranscriptTurn
from shopvoice.schemas.shop_schema import CommitResult, Customer, LineItem, ServicePrice, Vehicle


def new_session_id() -> str:
    return f"VS-{uuid.uuid4().hex[:6]}"


@dataclass
class ConversationSession:
    """Everything one capture session has heard and decided so far.

    Only the orchestrator mutates a session, and only from its own task.
    """

    session_id: str = field(default_factory=new_session_id)
    machine: ConversationStateMachine = field(default_factory=ConversationStateMachine)
    transcript_log: list[TranscriptTurn] = field(default_factory=list)
    matched_customer: Optional[Customer] = None
    candidate_vehicles: tuple[Vehicle, ...] = ()
    matched_vehicle: Optional[Vehicle] = None
    line_items: tuple[LineItem, ...] = ()
    recent_services: tuple[str, ...] = ()
    service_prices: tuple[ServicePrice, ...] = ()
    commit_result: Optional[CommitResult] = None
    error_message: Optional[str] = None

    @property
    def state(self) -> ConversationState:
        return self.machine.current_state

    @property
    def outcome(self) -> Optional[SessionOutcome]:
        """How the session ended, or None while it is still running."""
        if self.state == ConversationState.COMPLETE:
            return SessionOutcome.COMPLETE
        if self.state == ConversationState.CANCELLED:
            return SessionOutcome.CANCELLED
        if self.state == ConversationState.IDLE and len(self.machine.get_history()) > 1:
            return SessionOutcome.ABORTED
        return None

    def bind_customer(self, customer: Customer, vehicles: tuple[Vehicle, ...]) -> None:
        """Record the resolved customer and the vehicles they own.

        Vehicles belonging to anyone else are dropped.
        """
        if self.matched_customer is not None:
            raise ValueError(f"Session {self.session_id} already has a customer")
        self.matched_customer = customer
        self.candidate_vehicles = tuple(v for v in vehicles if v.customer_id == customer.id)

    def bind_vehicle(self, vehicle: Vehicle) -> None:
        if vehicle not in self.candidate_vehicles:
            raise ValueError(f"Vehicle {vehicle.id} does not belong to the matched customer")
        self.matched_vehicle = vehicle

    def log_turn(self, speaker: Speaker, text: str) -> TranscriptTurn:
        turn = TranscriptTurn(
            speaker=speaker,
            text=text,
            timestamp=time.time(),
            state=self.state.value,
        )
        self.transcript_log.append(turn)
        return turn
