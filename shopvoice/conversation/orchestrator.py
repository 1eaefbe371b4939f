"""
Conversation Orchestrator: drives one voice capture session end to end.

Every spoken exchange follows the same order: speak the prompt, move to the
listening state, record, transcribe, parse or resolve, update the session,
transition. Recording never starts while a prompt is still playing.

Failures never escape ``run``. Each ``VoiceFlowError`` is spoken to the user
and the session returns to idle; an explicit ``cancel()`` ends it in
cancelled. Nothing is committed unless the session reaches ``creating``
with at least one line item.

Usage:
    orchestrator = VoiceOrchestrator(player, capture, transcriber, backend, gateway)
    session = await orchestrator.run()
    print(session.state, session.line_items)
"""

import asyncio
from datetime import date, timedelta
from typing import Awaitable, Callable, Optional

from shopvoice.audio.capture import AudioCaptureController
from shopvoice.audio.prompt_player import SpeechPromptPlayer
from shopvoice.config import ShopConfig, settings
from shopvoice.conversation.intents import is_affirmative, is_done
from shopvoice.conversation.line_items import add_item, total
from shopvoice.conversation.session import ConversationSession
from shopvoice.conversation.state_machine import (
    AskingCustomer,
    AskingItemHours,
    AskingItemName,
    AskingItemPrice,
    AskingMore,
    AskingVehicle,
    Cancelled,
    Complete,
    ConversationState,
    Creating,
    Idle,
    ListeningCustomer,
    ListeningItemHours,
    ListeningItemName,
    ListeningItemPrice,
    ListeningMore,
    ListeningVehicle,
    Step,
    TERMINAL_STATES,
    TransitionTrigger,
)
from shopvoice.errors import (
    BackendUnavailable,
    CaptureCancelled,
    CommitFailed,
    NoEntityMatch,
    TooShort,
    TranscriptionFailed,
    VoiceFlowError,
)
from shopvoice.logging_context import get_session_logger, reset_session_id, set_session_id
from shopvoice.prompts import prompt_templates as prompts
from shopvoice.schemas.conversation_schema import Speaker
from shopvoice.schemas.shop_schema import Customer, LineItem, ServicePrice, Vehicle
from shopvoice.tools.commit import CommitGateway, service_type_slug
from shopvoice.tools.entity_resolver import find_customer_by_name, find_vehicle_by_description
from shopvoice.tools.quantity_parser import parse_hours, parse_price, parse_service_and_hours
from shopvoice.tools.shop_api import ShopBackend, ShopBackendError
from shopvoice.tools.transcription import Transcriber

logger = get_session_logger(__name__)


class VoiceOrchestrator:
    """Runs capture sessions over injected speech, audio, transcription and shop adapters."""

    def __init__(
        self,
        player: SpeechPromptPlayer,
        capture: AudioCaptureController,
        transcriber: Transcriber,
        backend: ShopBackend,
        commit_gateway: CommitGateway,
        max_retries: int = settings.transcription.max_retries,
        shop: ShopConfig = settings.shop,
    ) -> None:
        self._player = player
        self._capture = capture
        self._transcriber = transcriber
        self._backend = backend
        self._commit = commit_gateway
        self.max_retries = max_retries
        self.shop = shop
        self.session: Optional[ConversationSession] = None
        self._task: Optional[asyncio.Task] = None
        self._cancel_requested = False
        self._handlers: dict[ConversationState, Callable[[Step], Awaitable[None]]] = {
            ConversationState.ASKING_CUSTOMER: self._ask_customer,
            ConversationState.LISTENING_CUSTOMER: self._listen_customer,
            ConversationState.ASKING_VEHICLE: self._ask_vehicle,
            ConversationState.LISTENING_VEHICLE: self._listen_vehicle,
            ConversationState.ASKING_ITEM_NAME: self._ask_item_name,
            ConversationState.LISTENING_ITEM_NAME: self._listen_item_name,
            ConversationState.ASKING_ITEM_HOURS: self._ask_item_hours,
            ConversationState.LISTENING_ITEM_HOURS: self._listen_item_hours,
            ConversationState.ASKING_ITEM_PRICE: self._ask_item_price,
            ConversationState.LISTENING_ITEM_PRICE: self._listen_item_price,
            ConversationState.ASKING_MORE: self._ask_more,
            ConversationState.LISTENING_MORE: self._listen_more,
            ConversationState.CREATING: self._create,
        }

    # --- Public controls ---

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, session: Optional[ConversationSession] = None) -> ConversationSession:
        """Run one session until it completes, is cancelled, or falls back to idle."""
        if self.is_running:
            raise RuntimeError("A voice session is already running")
        self.session = session or ConversationSession()
        self._task = asyncio.current_task()
        self._cancel_requested = False
        token = set_session_id(self.session.session_id)
        try:
            logger.info("Voice session started (mode: %s)", self._commit.mode)
            await self._drive()
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._task.uncancel()
            await self._finish_cancelled("cancelled by user")
        except CaptureCancelled:
            await self._finish_cancelled("recording cancelled")
        except VoiceFlowError as exc:
            await self._abort(exc)
        finally:
            logger.info(
                "Voice session finished in %s with %d item(s)",
                self.session.state.value, len(self.session.line_items),
            )
            self._task = None
            reset_session_id(token)
        return self.session

    def cancel(self) -> None:
        """Abandon the running session. The microphone is released at once.

        Ignored while the final record is being written, so a commit is
        never left half-done, and once the session has already ended
        (complete, cancelled, or back in idle while the closing sentence
        plays).
        """
        if not self.is_running or self.session is None:
            return
        state = self.session.state
        if state == ConversationState.CREATING:
            logger.info("Cancel ignored: commit already in flight")
            return
        if state in TERMINAL_STATES or state == ConversationState.IDLE:
            logger.info("Cancel ignored: session already ended in %s", state.value)
            return
        self._cancel_requested = True
        self._capture.cancel_active()
        self._player.stop()
        self._task.cancel()

    def stop_listening(self) -> None:
        """End the current recording early and send it for transcription."""
        self._capture.request_stop()

    # --- Driving loop ---

    async def _drive(self) -> None:
        session = self.session
        self._advance(TransitionTrigger.SESSION_STARTED, AskingCustomer())
        while not session.machine.is_terminal() and session.state != ConversationState.IDLE:
            step = session.machine.step
            await self._handlers[step.state](step)
            session = self.session

    def _advance(self, trigger: TransitionTrigger, step: Step) -> None:
        self.session.machine.transition(trigger, step)

    async def _say(self, text: str) -> None:
        self.session.log_turn(Speaker.ASSISTANT, text)
        await self._player.speak(text)

    async def _listen(self) -> str:
        """Record and transcribe one answer, re-prompting on recoverable failures.

        A retry re-prompts and re-records; the same audio is never resubmitted.

        Raises:
            TooShort, TranscriptionFailed: Once ``max_retries`` retries are used up.
        """
        attempt = 0
        while True:
            try:
                recording = await self._capture.capture()
                text = await self._transcriber.transcribe(recording)
            except (TooShort, TranscriptionFailed) as exc:
                attempt += 1
                if attempt > self.max_retries:
                    logger.warning("Giving up after %d attempts: %s", attempt, exc)
                    raise
                logger.warning("Attempt %d failed (%s), asking again", attempt, exc)
                await self._say(prompts.RETRY)
                continue
            self.session.log_turn(Speaker.USER, text)
            logger.debug("Heard %r in %s", text, self.session.state.value)
            return text

    async def _finish_cancelled(self, reason: str) -> None:
        self._advance(TransitionTrigger.CANCELLED, Cancelled(reason=reason))
        logger.info("Session cancelled: %s", reason)
        await self._say_closing(prompts.CANCELLED)

    async def _say_closing(self, text: str) -> None:
        """Speak the last sentence of a session that has already ended.

        A user cancel landing here has nothing left to cancel, so it is
        absorbed and the final state is kept.
        """
        try:
            await self._say(text)
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._task.uncancel()
            logger.debug("Cancel during closing sentence ignored in %s", self.session.state.value)

    async def _abort(self, exc: VoiceFlowError) -> None:
        session = self.session
        session.error_message = str(exc)
        if isinstance(exc, CommitFailed):
            logger.exception("Commit failed; %d item(s) kept but not resubmitted", len(session.line_items))
        else:
            logger.warning("Session aborted in %s: %s", session.state.value, exc)
        self._advance(TransitionTrigger.ABORTED, Idle())
        await self._say_closing(exc.spoken_message)

    # --- Customer and vehicle ---

    async def _ask_customer(self, step: AskingCustomer) -> None:
        await self._say(prompts.ASK_CUSTOMER)
        self._advance(TransitionTrigger.PROMPT_SPOKEN, ListeningCustomer())

    async def _listen_customer(self, step: ListeningCustomer) -> None:
        spoken = await self._listen()
        customers = await self._load(self._backend.get_customers(), "customers")
        customer = find_customer_by_name(spoken, customers)
        if customer is None:
            raise NoEntityMatch(
                f"No customer matches {spoken!r}",
                spoken_message=prompts.build_customer_not_found(spoken),
            )
        vehicles = await self._load(self._backend.get_vehicles(customer.id), "vehicles")
        self.session.bind_customer(customer, tuple(vehicles))
        candidates = self.session.candidate_vehicles
        logger.info("Customer %s matched with %d vehicle(s)", customer.id, len(candidates))

        if not candidates:
            raise NoEntityMatch(
                f"Customer {customer.id} has no vehicles",
                spoken_message=prompts.build_no_vehicles(customer.name),
            )
        if len(candidates) == 1:
            await self._say(prompts.build_single_vehicle_found(customer.name, candidates[0]))
            await self._select_vehicle(customer, candidates[0])
            return
        self._advance(
            TransitionTrigger.VEHICLE_REQUIRED,
            AskingVehicle(customer=customer, candidates=candidates),
        )

    async def _ask_vehicle(self, step: AskingVehicle) -> None:
        await self._say(prompts.build_vehicle_choice(step.customer.name, step.candidates))
        self._advance(
            TransitionTrigger.PROMPT_SPOKEN,
            ListeningVehicle(customer=step.customer, candidates=step.candidates),
        )

    async def _listen_vehicle(self, step: ListeningVehicle) -> None:
        spoken = await self._listen()
        vehicle = find_vehicle_by_description(spoken, step.candidates)
        if vehicle is None:
            raise NoEntityMatch(
                f"No vehicle matches {spoken!r}",
                spoken_message=prompts.VEHICLE_NOT_MATCHED,
            )
        await self._say(prompts.build_vehicle_selected(vehicle))
        await self._select_vehicle(step.customer, vehicle)

    async def _select_vehicle(self, customer: Customer, vehicle: Vehicle) -> None:
        session = self.session
        session.bind_vehicle(vehicle)
        prices = await self._load(self._backend.get_service_prices(), "service prices")
        session.service_prices = tuple(prices)
        if self._commit.mode == "invoice":
            session.recent_services = await self._recent_services(vehicle)

        if session.recent_services:
            first = AskingItemHours(customer, vehicle, session.recent_services[0], position=1)
        else:
            first = AskingItemHours(customer, vehicle)
        self._advance(TransitionTrigger.VEHICLE_SELECTED, first)

    async def _recent_services(self, vehicle: Vehicle) -> tuple[str, ...]:
        logs = await self._load(self._backend.get_service_logs(vehicle.id), "service history")
        cutoff = date.today() - timedelta(days=self.shop.recent_service_days)
        names: list[str] = []
        for log in sorted(logs, key=lambda s: s.service_date, reverse=True):
            if log.service_date < cutoff:
                continue
            name = self._display_name(log.service_type)
            if name not in names:
                names.append(name)
        logger.debug("%d recent service(s) for vehicle %s", len(names), vehicle.id)
        return tuple(names)

    # --- Item loop ---

    async def _ask_item_hours(self, step: AskingItemHours) -> None:
        await self._say(prompts.build_hours_prompt(step.service_name, step.position))
        self._advance(
            TransitionTrigger.PROMPT_SPOKEN,
            ListeningItemHours(step.customer, step.vehicle, step.service_name, step.position),
        )

    async def _listen_item_hours(self, step: ListeningItemHours) -> None:
        spoken = await self._listen()
        if is_done(spoken):
            self._advance(TransitionTrigger.DONE_SPOKEN, AskingMore(step.customer, step.vehicle))
            return
        if step.service_name is None:
            parsed = parse_service_and_hours(spoken)
            name = parsed.service or self.shop.fallback_service_name
            hours = parsed.hours
        else:
            name = step.service_name
            hours = parse_hours(spoken)
        self._advance(
            TransitionTrigger.HOURS_CAPTURED,
            AskingItemPrice(
                step.customer, step.vehicle, name, hours,
                suggested_price=self._suggested_price(name),
                position=step.position,
            ),
        )

    async def _ask_item_price(self, step: AskingItemPrice) -> None:
        await self._say(prompts.build_price_prompt(step.suggested_price))
        self._advance(
            TransitionTrigger.PROMPT_SPOKEN,
            ListeningItemPrice(
                step.customer, step.vehicle, step.service_name, step.hours,
                step.suggested_price, step.position,
            ),
        )

    async def _listen_item_price(self, step: ListeningItemPrice) -> None:
        spoken = await self._listen()
        item = LineItem(
            name=step.service_name,
            hours=step.hours,
            price=parse_price(spoken, default=step.suggested_price),
        )
        self.session = add_item(self.session, item)
        await self._say(prompts.build_item_added(item))

        recent = self.session.recent_services
        if step.position is not None and step.position < len(recent):
            self._advance(
                TransitionTrigger.NEXT_ITEM,
                AskingItemHours(
                    step.customer, step.vehicle, recent[step.position], position=step.position + 1
                ),
            )
        else:
            self._advance(TransitionTrigger.ITEM_ADDED, AskingMore(step.customer, step.vehicle))

    async def _ask_more(self, step: AskingMore) -> None:
        await self._say(prompts.ASK_MORE)
        self._advance(TransitionTrigger.PROMPT_SPOKEN, ListeningMore(step.customer, step.vehicle))

    async def _listen_more(self, step: ListeningMore) -> None:
        spoken = await self._listen()
        if is_affirmative(spoken):
            self._advance(TransitionTrigger.MORE_REQUESTED, AskingItemName(step.customer, step.vehicle))
            return
        items = self.session.line_items
        if not items:
            await self._say(prompts.NO_ITEMS)
            self._advance(TransitionTrigger.NOTHING_TO_COMMIT, Cancelled(reason="no line items"))
            return
        self._advance(TransitionTrigger.FINISHED, Creating(step.customer, step.vehicle, items))

    async def _ask_item_name(self, step: AskingItemName) -> None:
        await self._say(prompts.ASK_ITEM_NAME)
        self._advance(TransitionTrigger.PROMPT_SPOKEN, ListeningItemName(step.customer, step.vehicle))

    async def _listen_item_name(self, step: ListeningItemName) -> None:
        spoken = await self._listen()
        name = parse_service_and_hours(spoken).service or self.shop.fallback_service_name
        self._advance(
            TransitionTrigger.NAME_CAPTURED,
            AskingItemHours(step.customer, step.vehicle, service_name=name),
        )

    # --- Commit ---

    async def _create(self, step: Creating) -> None:
        if self._commit.mode == "invoice":
            await self._say(prompts.build_creating_invoice(total(self.session)))
        else:
            await self._say(prompts.SAVING_SERVICE_LOG)
        result = await self._commit.commit(step.customer, step.vehicle, step.items)
        self.session.commit_result = result
        self._advance(TransitionTrigger.COMMIT_SUCCEEDED, Complete(result))
        logger.info("Committed %s %s", result.kind, result.reference or result.record_id)
        if result.kind == "invoice":
            await self._say_closing(prompts.build_invoice_created(result.reference, step.customer.name, result.total))
        else:
            await self._say_closing(prompts.build_service_logged(step.vehicle, step.items))

    # --- Helpers ---

    async def _load(self, call: Awaitable, what: str):
        try:
            return await call
        except ShopBackendError as exc:
            raise BackendUnavailable(f"Could not load {what}: {exc}") from exc

    def _find_price(self, name: str) -> Optional[ServicePrice]:
        slug = service_type_slug(name)
        for price in self.session.service_prices:
            if price.service_type == slug or price.display_name.lower() == name.lower():
                return price
        return None

    def _display_name(self, service_type: str) -> str:
        for price in self.session.service_prices:
            if price.service_type == service_type:
                return price.display_name
        return service_type.replace("_", " ").title()

    def _suggested_price(self, name: str) -> float:
        price = self._find_price(name)
        return price.base_price if price is not None else self.shop.default_item_price
