"""
Finite state machine for the voice capture flow.

Each state is a frozen dataclass carrying only the data that is valid in
that state (the vehicle exists once it is chosen, ``Creating`` holds the
items to commit, ...). The machine accepts a new step only when an explicit
``(from_state, trigger)`` transition leads to the step's state and its
guard passes.

Listening states are entered only through ``PROMPT_SPOKEN`` from their
matching asking state, so nothing is ever recorded before its prompt has
been spoken.

Usage:
    sm = ConversationStateMachine()
    sm.transition(TransitionTrigger.SESSION_STARTED, AskingCustomer())
    sm.transition(TransitionTrigger.PROMPT_SPOKEN, ListeningCustomer())
    assert sm.current_state == ConversationState.LISTENING_CUSTOMER
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, ClassVar, Optional, Union

from shopvoice.schemas.shop_schema import CommitResult, Customer, LineItem, Vehicle

logger = logging.getLogger(__name__)


class ConversationState(str, Enum):
    """All possible states of one capture session."""
    IDLE = "idle"
    ASKING_CUSTOMER = "asking_customer"
    LISTENING_CUSTOMER = "listening_customer"
    ASKING_VEHICLE = "asking_vehicle"
    LISTENING_VEHICLE = "listening_vehicle"
    ASKING_ITEM_NAME = "asking_item_name"
    LISTENING_ITEM_NAME = "listening_item_name"
    ASKING_ITEM_HOURS = "asking_item_hours"
    LISTENING_ITEM_HOURS = "listening_item_hours"
    ASKING_ITEM_PRICE = "asking_item_price"
    LISTENING_ITEM_PRICE = "listening_item_price"
    ASKING_MORE = "asking_more"
    LISTENING_MORE = "listening_more"
    CREATING = "creating"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class TransitionTrigger(str, Enum):
    """Events that cause state transitions."""
    SESSION_STARTED = "session_started"
    PROMPT_SPOKEN = "prompt_spoken"
    VEHICLE_REQUIRED = "vehicle_required"
    VEHICLE_SELECTED = "vehicle_selected"
    HOURS_CAPTURED = "hours_captured"
    DONE_SPOKEN = "done_spoken"
    ITEM_ADDED = "item_added"
    NEXT_ITEM = "next_item"
    MORE_REQUESTED = "more_requested"
    NAME_CAPTURED = "name_captured"
    FINISHED = "finished"
    NOTHING_TO_COMMIT = "nothing_to_commit"
    COMMIT_SUCCEEDED = "commit_succeeded"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


# --- Steps ---

@dataclass(frozen=True)
class Idle:
    state: ClassVar[ConversationState] = ConversationState.IDLE


@dataclass(frozen=True)
class AskingCustomer:
    state: ClassVar[ConversationState] = ConversationState.ASKING_CUSTOMER


@dataclass(frozen=True)
class ListeningCustomer:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_CUSTOMER


@dataclass(frozen=True)
class AskingVehicle:
    state: ClassVar[ConversationState] = ConversationState.ASKING_VEHICLE
    customer: Customer
    candidates: tuple[Vehicle, ...]


@dataclass(frozen=True)
class ListeningVehicle:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_VEHICLE
    customer: Customer
    candidates: tuple[Vehicle, ...]


@dataclass(frozen=True)
class AskingItemName:
    state: ClassVar[ConversationState] = ConversationState.ASKING_ITEM_NAME
    customer: Customer
    vehicle: Vehicle


@dataclass(frozen=True)
class ListeningItemName:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_ITEM_NAME
    customer: Customer
    vehicle: Vehicle


@dataclass(frozen=True)
class AskingItemHours:
    """``service_name`` is None for a free-form item; ``position`` is set while
    walking the vehicle's recent services."""
    state: ClassVar[ConversationState] = ConversationState.ASKING_ITEM_HOURS
    customer: Customer
    vehicle: Vehicle
    service_name: Optional[str] = None
    position: Optional[int] = None


@dataclass(frozen=True)
class ListeningItemHours:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_ITEM_HOURS
    customer: Customer
    vehicle: Vehicle
    service_name: Optional[str] = None
    position: Optional[int] = None


@dataclass(frozen=True)
class AskingItemPrice:
    state: ClassVar[ConversationState] = ConversationState.ASKING_ITEM_PRICE
    customer: Customer
    vehicle: Vehicle
    service_name: str
    hours: float
    suggested_price: float
    position: Optional[int] = None


@dataclass(frozen=True)
class ListeningItemPrice:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_ITEM_PRICE
    customer: Customer
    vehicle: Vehicle
    service_name: str
    hours: float
    suggested_price: float
    position: Optional[int] = None


@dataclass(frozen=True)
class AskingMore:
    state: ClassVar[ConversationState] = ConversationState.ASKING_MORE
    customer: Customer
    vehicle: Vehicle


@dataclass(frozen=True)
class ListeningMore:
    state: ClassVar[ConversationState] = ConversationState.LISTENING_MORE
    customer: Customer
    vehicle: Vehicle


@dataclass(frozen=True)
class Creating:
    state: ClassVar[ConversationState] = ConversationState.CREATING
    customer: Customer
    vehicle: Vehicle
    items: tuple[LineItem, ...]


@dataclass(frozen=True)
class Complete:
    state: ClassVar[ConversationState] = ConversationState.COMPLETE
    result: CommitResult


@dataclass(frozen=True)
class Cancelled:
    state: ClassVar[ConversationState] = ConversationState.CANCELLED
    reason: str = ""


Step = Union[
    Idle, AskingCustomer, ListeningCustomer, AskingVehicle, ListeningVehicle,
    AskingItemName, ListeningItemName, AskingItemHours, ListeningItemHours,
    AskingItemPrice, ListeningItemPrice, AskingMore, ListeningMore,
    Creating, Complete, Cancelled,
]

TERMINAL_STATES = frozenset({ConversationState.COMPLETE, ConversationState.CANCELLED})

LISTENING_STATES = frozenset({
    ConversationState.LISTENING_CUSTOMER,
    ConversationState.LISTENING_VEHICLE,
    ConversationState.LISTENING_ITEM_NAME,
    ConversationState.LISTENING_ITEM_HOURS,
    ConversationState.LISTENING_ITEM_PRICE,
    ConversationState.LISTENING_MORE,
})


def _has_items(step: Step) -> bool:
    return isinstance(step, Creating) and len(step.items) > 0


@dataclass
class Transition:
    """A single valid state transition."""
    from_state: ConversationState
    to_state: ConversationState
    trigger: TransitionTrigger
    guard: Optional[Callable[[Step], bool]] = None


@dataclass
class StateEntry:
    """Recorded history entry for a state visit."""
    state: ConversationState
    entered_at: datetime
    trigger: Optional[TransitionTrigger] = None


class InvalidTransitionError(Exception):
    """Raised when a transition is not valid from the current state."""


S = ConversationState
T = TransitionTrigger


class ConversationStateMachine:
    """
    Deterministic state machine for one capture session.

    Every transition must be explicitly listed. Anything else is rejected
    with an error naming the triggers that are allowed from the current
    state.
    """

    TRANSITIONS: list[Transition] = [
        # --- Customer ---
        Transition(S.IDLE, S.ASKING_CUSTOMER, T.SESSION_STARTED),
        Transition(S.ASKING_CUSTOMER, S.LISTENING_CUSTOMER, T.PROMPT_SPOKEN),

        # --- Vehicle (skipped when the customer owns exactly one) ---
        Transition(S.LISTENING_CUSTOMER, S.ASKING_VEHICLE, T.VEHICLE_REQUIRED),
        Transition(S.LISTENING_CUSTOMER, S.ASKING_ITEM_HOURS, T.VEHICLE_SELECTED),
        Transition(S.ASKING_VEHICLE, S.LISTENING_VEHICLE, T.PROMPT_SPOKEN),
        Transition(S.LISTENING_VEHICLE, S.ASKING_ITEM_HOURS, T.VEHICLE_SELECTED),

        # --- Item loop ---
        Transition(S.ASKING_ITEM_HOURS, S.LISTENING_ITEM_HOURS, T.PROMPT_SPOKEN),
        Transition(S.LISTENING_ITEM_HOURS, S.ASKING_ITEM_PRICE, T.HOURS_CAPTURED),
        Transition(S.LISTENING_ITEM_HOURS, S.ASKING_MORE, T.DONE_SPOKEN),
        Transition(S.ASKING_ITEM_PRICE, S.LISTENING_ITEM_PRICE, T.PROMPT_SPOKEN),
        Transition(S.LISTENING_ITEM_PRICE, S.ASKING_ITEM_HOURS, T.NEXT_ITEM),
        Transition(S.LISTENING_ITEM_PRICE, S.ASKING_MORE, T.ITEM_ADDED),

        # --- Add more ---
        Transition(S.ASKING_MORE, S.LISTENING_MORE, T.PROMPT_SPOKEN),
        Transition(S.LISTENING_MORE, S.ASKING_ITEM_NAME, T.MORE_REQUESTED),
        Transition(S.ASKING_ITEM_NAME, S.LISTENING_ITEM_NAME, T.PROMPT_SPOKEN),
        Transition(S.LISTENING_ITEM_NAME, S.ASKING_ITEM_HOURS, T.NAME_CAPTURED),

        # --- Commit ---
        Transition(S.LISTENING_MORE, S.CREATING, T.FINISHED, guard=_has_items),
        Transition(S.LISTENING_MORE, S.CANCELLED, T.NOTHING_TO_COMMIT),
        Transition(S.CREATING, S.COMPLETE, T.COMMIT_SUCCEEDED),
    ]

    # --- Abort / cancel from anywhere not yet finished ---
    TRANSITIONS += [
        Transition(state, S.IDLE, T.ABORTED)
        for state in S if state not in TERMINAL_STATES and state != S.IDLE
    ]
    TRANSITIONS += [
        Transition(state, S.CANCELLED, T.CANCELLED)
        for state in S if state not in TERMINAL_STATES
    ]

    def __init__(self) -> None:
        self._step: Step = Idle()
        self._history: list[StateEntry] = [
            StateEntry(state=S.IDLE, entered_at=datetime.now(timezone.utc))
        ]

    @property
    def step(self) -> Step:
        return self._step

    @property
    def current_state(self) -> ConversationState:
        return self._step.state

    def transition(self, trigger: TransitionTrigger, step: Step) -> Step:
        """
        Move to ``step``.

        Args:
            trigger: The event triggering the transition.
            step: The new step; its state must be the transition's target.

        Returns:
            The new step.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        current = self.current_state
        for t in self.TRANSITIONS:
            if t.from_state != current or t.trigger != trigger or t.to_state != step.state:
                continue
            if t.guard is not None and not t.guard(step):
                continue

            self._step = step
            self._history.append(StateEntry(
                state=step.state,
                entered_at=datetime.now(timezone.utc),
                trigger=trigger,
            ))
            logger.debug(
                "State transition: %s -> %s (trigger: %s)",
                current.value, step.state.value, trigger.value,
            )
            return step

        valid = [t.value for t in self.get_valid_triggers()]
        raise InvalidTransitionError(
            f"No valid transition from '{current.value}' to '{step.state.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {valid}"
        )

    def get_valid_triggers(self) -> list[TransitionTrigger]:
        """Return all triggers valid from the current state."""
        return [t.trigger for t in self.TRANSITIONS if t.from_state == self.current_state]

    def get_history(self) -> list[StateEntry]:
        """Return the full state transition history."""
        return list(self._history)

    def get_state_trace(self) -> list[str]:
        """Return ordered list of state names visited."""
        return [entry.state.value for entry in self._history]

    def is_terminal(self) -> bool:
        return self.current_state in TERMINAL_STATES
