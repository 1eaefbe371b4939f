"""End-to-end tests for the conversation orchestrator over fake devices."""

import asyncio

import pytest

from shopvoice.conversation.state_machine import ConversationState, LISTENING_STATES
from shopvoice.errors import TooShort, TranscriptionFailed
from shopvoice.schemas.conversation_schema import SessionOutcome, Speaker
from shopvoice.schemas.shop_schema import LineItem
from tests.conftest import FakeMicrophone, build_rig


def assert_mic_balanced(rig):
    assert rig.capture.acquisitions == rig.capture.releases
    assert not rig.capture.is_recording
    assert not rig.microphone.is_open


async def wait_until_recording(rig, timeout: float = 2.0):
    async def poll():
        while not rig.capture.is_recording:
            await asyncio.sleep(0)
    await asyncio.wait_for(poll(), timeout)


class TestSingleVehicleInvoice:
    @pytest.mark.asyncio
    async def test_john_smith_one_item(self):
        rig = build_rig(["John Smith", "Oil change one hour", "eighty dollars", "no"])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.COMPLETE
        assert session.outcome == SessionOutcome.COMPLETE
        assert session.line_items == (LineItem(name="Oil change", hours=1, price=80),)
        assert rig.directory.commit_calls == 1
        invoice = rig.directory.created_invoices[0]
        assert invoice.customer_id == "c-1001"
        assert invoice.vehicle_id == "v-2001"
        assert [(s.name, s.labor_hours, s.price) for s in invoice.services] == [("Oil change", 1, 80)]
        assert invoice.tax_rate == pytest.approx(0.0825)
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_single_vehicle_is_not_asked_for(self):
        rig = build_rig(["John Smith", "Oil change one hour", "eighty dollars", "no"])
        session = await rig.orchestrator.run()

        trace = session.machine.get_state_trace()
        assert "asking_vehicle" not in trace
        assert "Found John Smith with a 2020 Honda Accord." in rig.player.spoken
        assert session.matched_vehicle.id == "v-2001"

    @pytest.mark.asyncio
    async def test_spoken_read_backs(self):
        rig = build_rig(["John Smith", "Oil change one hour", "eighty dollars", "no"])
        await rig.orchestrator.run()

        assert "What's the price? The default is $65." in rig.player.spoken
        assert "Added Oil change, 1 hour, $80." in rig.player.spoken
        assert "Creating invoice for $80.00 plus tax." in rig.player.spoken
        assert rig.player.spoken[-1].startswith("Invoice INV-")

    @pytest.mark.asyncio
    async def test_unmatched_price_uses_suggested_price(self):
        rig = build_rig(["John Smith", "Tire swap two hours", "um whatever", "no"])
        session = await rig.orchestrator.run()

        assert session.line_items == (LineItem(name="Tire swap", hours=2, price=95),)

    @pytest.mark.asyncio
    async def test_missing_service_text_uses_fallback_name(self):
        rig = build_rig(["John Smith", "two hours", "$50", "no"])
        session = await rig.orchestrator.run()

        assert session.line_items[0].name == "General service"
        assert session.line_items[0].hours == 2


class TestNoMatch:
    @pytest.mark.asyncio
    async def test_unknown_customer_returns_to_idle(self):
        rig = build_rig(["Bob Nobody"])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert session.outcome == SessionOutcome.ABORTED
        assert session.matched_customer is None
        assert rig.directory.commit_calls == 0
        assert rig.player.spoken[-1] == (
            "Sorry, I couldn't find a customer named Bob Nobody. Please try again."
        )
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_customer_without_vehicles_returns_to_idle(self):
        rig = build_rig(["Maria Garcia"])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert session.matched_customer.id == "c-1003"
        assert rig.player.spoken[-1] == "Maria Garcia has no vehicles registered."

    @pytest.mark.asyncio
    async def test_unmatched_vehicle_returns_to_idle(self):
        rig = build_rig(["Sarah Johnson", "the Tesla"])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert session.matched_vehicle is None
        assert rig.player.spoken[-1] == "Sorry, I couldn't match that vehicle."
        assert rig.directory.commit_calls == 0


class TestMultiVehicle:
    @pytest.mark.asyncio
    async def test_vehicle_prompt_lists_candidates(self):
        rig = build_rig(["Sarah Johnson", "the Ford", "Alignment one hour", "$100", "no"])
        session = await rig.orchestrator.run()

        assert "Sarah Johnson has 2 vehicles: 2018 Toyota Camry, or 2021 Ford F-150. Which vehicle?" in rig.player.spoken
        assert session.matched_vehicle.id == "v-2003"
        assert session.state == ConversationState.COMPLETE

    @pytest.mark.asyncio
    async def test_vehicle_resolution_stays_within_customer(self):
        # David Lee owns the Civic; Sarah must not get it
        rig = build_rig(["Sarah Johnson", "honda civic"])
        session = await rig.orchestrator.run()

        assert session.matched_vehicle is None
        assert session.state == ConversationState.IDLE

    @pytest.mark.asyncio
    async def test_recent_service_walk(self):
        rig = build_rig([
            "Sarah Johnson", "the Camry",
            "one hour", "$70",
            "half an hour", "the usual",
            "no",
        ])
        session = await rig.orchestrator.run()

        assert "Service 1: Oil Change. How many hours? Or say done to skip remaining services." in rig.player.spoken
        assert "What's the price? The default is $120." in rig.player.spoken
        assert session.line_items == (
            LineItem(name="Oil Change", hours=1, price=70),
            LineItem(name="Brake Inspection", hours=0.5, price=120),
        )
        assert session.state == ConversationState.COMPLETE

    @pytest.mark.asyncio
    async def test_done_skips_remaining_services(self):
        rig = build_rig([
            "Sarah Johnson", "the Camry",
            "one hour", "$70",
            "done",
            "no",
        ])
        session = await rig.orchestrator.run()

        assert [item.name for item in session.line_items] == ["Oil Change"]
        trace = session.machine.get_state_trace()
        assert trace.count("asking_item_price") == 1
        assert rig.directory.commit_calls == 1


class TestAddMore:
    @pytest.mark.asyncio
    async def test_custom_item_after_yes(self):
        rig = build_rig([
            "John Smith", "Oil change one hour", "eighty",
            "yes",
            "Wiper blades", "half an hour", "twenty",
            "no",
        ])
        session = await rig.orchestrator.run()

        assert "What service did you perform?" in rig.player.spoken
        assert "How many hours for Wiper blades?" in rig.player.spoken
        assert session.line_items[-1] == LineItem(name="Wiper blades", hours=0.5, price=20)
        assert len(rig.directory.created_invoices[0].services) == 2

    @pytest.mark.asyncio
    async def test_zero_items_never_reaches_creating(self):
        rig = build_rig(["Sarah Johnson", "the Ford", "done", "no"])
        session = await rig.orchestrator.run()

        trace = session.machine.get_state_trace()
        assert "creating" not in trace
        assert "complete" not in trace
        assert session.state == ConversationState.CANCELLED
        assert rig.directory.commit_calls == 0
        assert "No items to record. Cancelling." in rig.player.spoken


class TestRetries:
    @pytest.mark.asyncio
    async def test_three_transcription_failures_return_to_idle(self):
        failures = [TranscriptionFailed("empty") for _ in range(3)]
        rig = build_rig(failures + ["John Smith"])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert rig.transcriber.calls == 3
        assert rig.player.spoken.count("I didn't catch that. Please try again.") == 2
        assert rig.directory.commit_calls == 0
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_recovers_within_retry_budget(self):
        rig = build_rig([
            TranscriptionFailed("empty"), TranscriptionFailed("empty"),
            "John Smith", "Oil change one hour", "eighty", "no",
        ])
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.COMPLETE
        assert rig.capture.acquisitions == 6

    @pytest.mark.asyncio
    async def test_too_short_recording_is_retried(self):
        rig = build_rig(["John Smith"], microphone=FakeMicrophone(payload_size=10))
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert rig.transcriber.calls == 0
        assert rig.capture.acquisitions == 3
        assert session.error_message.startswith("Recording was 10 bytes")
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_zero_retry_budget(self):
        rig = build_rig([TooShort("short")], max_retries=0)
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert rig.transcriber.calls == 1


class TestDeviceFailures:
    @pytest.mark.asyncio
    async def test_permission_denied_aborts_without_retry(self):
        rig = build_rig(["John Smith"], microphone=FakeMicrophone(deny=True))
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert rig.player.spoken[-1] == "I don't have permission to use the microphone."
        assert rig.capture.acquisitions == 0
        assert rig.capture.releases == 0

    @pytest.mark.asyncio
    async def test_unavailable_device_aborts(self):
        rig = build_rig(["John Smith"], microphone=FakeMicrophone(broken=True))
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert rig.player.spoken[-1] == "The microphone is not available right now."


class TestCommitFailure:
    @pytest.mark.asyncio
    async def test_failed_commit_keeps_items_and_returns_to_idle(self):
        rig = build_rig(["John Smith", "Oil change one hour", "eighty", "no"])
        rig.directory.fail_commits = True
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.IDLE
        assert session.line_items == (LineItem(name="Oil change", hours=1, price=80),)
        assert session.commit_result is None
        assert "creating" in session.machine.get_state_trace()
        assert rig.player.spoken[-1] == "Sorry, I couldn't save the record. Please try again."


class TestServiceLogMode:
    @pytest.mark.asyncio
    async def test_service_log_committed_once(self):
        rig = build_rig(
            ["John Smith", "We did brake pads two and a half hours", "one fifty", "no thanks"],
            mode="service_log",
        )
        session = await rig.orchestrator.run()

        assert session.state == ConversationState.COMPLETE
        assert rig.directory.commit_calls == 1
        record = rig.directory.created_service_logs[0]
        assert record.vehicle_id == "v-2001"
        assert record.service_type == "BRAKE_PADS"
        assert record.labor_hours == 2.5
        assert record.mileage_at_service == 45210
        assert session.line_items == (LineItem(name="brake pads", hours=2.5, price=150),)

    @pytest.mark.asyncio
    async def test_service_log_mode_skips_recent_walk(self):
        rig = build_rig(
            ["Sarah Johnson", "the Camry", "Oil change one hour", "$70", "no"],
            mode="service_log",
        )
        await rig.orchestrator.run()

        assert "Please state the service done and how many hours." in rig.player.spoken
        assert not any(line.startswith("Service 1:") for line in rig.player.spoken)


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_while_listening(self):
        rig = build_rig(["John Smith"], ceiling_sec=5.0)
        task = asyncio.create_task(rig.orchestrator.run())
        await wait_until_recording(rig)

        assert rig.orchestrator.session.state in LISTENING_STATES
        rig.orchestrator.cancel()
        session = await task

        assert session.state == ConversationState.CANCELLED
        assert session.outcome == SessionOutcome.CANCELLED
        assert rig.directory.commit_calls == 0
        assert rig.transcriber.calls == 0
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_cancel_in_later_listening_state(self):
        rig = build_rig(["John Smith", "Oil change one hour"], ceiling_sec=0.05)
        task = asyncio.create_task(rig.orchestrator.run())

        async def reach_price():
            while rig.orchestrator.session is None or (
                rig.orchestrator.session.state != ConversationState.LISTENING_ITEM_PRICE
                or not rig.capture.is_recording
            ):
                await asyncio.sleep(0)
        await asyncio.wait_for(reach_price(), 2.0)

        rig.orchestrator.cancel()
        session = await task

        assert session.state == ConversationState.CANCELLED
        assert session.line_items == ()
        assert rig.directory.commit_calls == 0
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_cancel_while_prompt_is_playing(self):
        rig = build_rig(["John Smith"], hold_prefix="Please say the name")
        task = asyncio.create_task(rig.orchestrator.run())
        await asyncio.wait_for(rig.player.held.wait(), 2.0)

        assert rig.orchestrator.session.state == ConversationState.ASKING_CUSTOMER
        rig.orchestrator.cancel()
        session = await asyncio.wait_for(task, 2.0)

        assert session.state == ConversationState.CANCELLED
        assert rig.player.interrupts >= 1
        assert rig.player.spoken[-1] == "Cancelled."
        assert rig.capture.acquisitions == 0
        assert rig.transcriber.calls == 0
        assert rig.directory.commit_calls == 0

    @pytest.mark.asyncio
    async def test_cancel_during_final_read_back_keeps_complete(self):
        rig = build_rig(
            ["John Smith", "Oil change one hour", "eighty dollars", "no"],
            hold_prefix="Invoice",
        )
        task = asyncio.create_task(rig.orchestrator.run())
        await asyncio.wait_for(rig.player.held.wait(), 2.0)

        assert rig.orchestrator.session.state == ConversationState.COMPLETE
        rig.orchestrator.cancel()
        rig.player.release.set()
        session = await asyncio.wait_for(task, 2.0)

        assert session.state == ConversationState.COMPLETE
        assert session.outcome == SessionOutcome.COMPLETE
        assert rig.directory.commit_calls == 1
        assert rig.player.spoken[-1].startswith("Invoice INV-1001 created")
        assert "Cancelled." not in rig.player.spoken

    @pytest.mark.asyncio
    async def test_cancel_during_apology_keeps_idle(self):
        rig = build_rig(["Bob Nobody"], hold_prefix="Sorry, I couldn't find")
        task = asyncio.create_task(rig.orchestrator.run())
        await asyncio.wait_for(rig.player.held.wait(), 2.0)

        assert rig.orchestrator.session.state == ConversationState.IDLE
        rig.orchestrator.cancel()
        rig.player.release.set()
        session = await asyncio.wait_for(task, 2.0)

        assert session.state == ConversationState.IDLE
        assert session.matched_customer is None
        assert rig.player.spoken[-1].startswith("Sorry, I couldn't find")
        assert "Cancelled." not in rig.player.spoken
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_second_cancel_during_cancelled_sentence(self):
        rig = build_rig(["John Smith"], ceiling_sec=5.0, hold_prefix="Cancelled")
        task = asyncio.create_task(rig.orchestrator.run())
        await wait_until_recording(rig)

        rig.orchestrator.cancel()
        await asyncio.wait_for(rig.player.held.wait(), 2.0)
        assert rig.orchestrator.session.state == ConversationState.CANCELLED
        rig.orchestrator.cancel()
        rig.player.release.set()
        session = await asyncio.wait_for(task, 2.0)

        assert session.state == ConversationState.CANCELLED
        assert rig.player.spoken.count("Cancelled.") == 1
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_outside_task_cancel_still_propagates(self):
        rig = build_rig(["John Smith"], ceiling_sec=5.0)
        task = asyncio.create_task(rig.orchestrator.run())
        await wait_until_recording(rig)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert_mic_balanced(rig)

    @pytest.mark.asyncio
    async def test_stop_listening_ends_recording_early(self):
        rig = build_rig(["Bob Nobody"], ceiling_sec=5.0)
        task = asyncio.create_task(rig.orchestrator.run())
        await wait_until_recording(rig)

        rig.orchestrator.stop_listening()
        session = await asyncio.wait_for(task, 2.0)

        assert rig.transcriber.calls == 1
        assert session.state == ConversationState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_without_session_is_noop(self):
        rig = build_rig([])
        rig.orchestrator.cancel()
        assert rig.orchestrator.session is None


class TestTurnTaking:
    @pytest.mark.asyncio
    async def test_prompt_finishes_before_every_recording(self):
        rig = build_rig([
            "Sarah Johnson", "the Camry",
            TranscriptionFailed("empty"), "one hour", "$70",
            "done", "yes", "Wiper blades", "half an hour", "twenty", "no",
        ])
        await rig.orchestrator.run()

        last_speech = None
        opens = 0
        for event in rig.events:
            if isinstance(event, tuple):
                last_speech = event[0]
            elif event == "mic_open":
                opens += 1
                assert last_speech == "speak_end"
        assert opens == rig.capture.acquisitions

    @pytest.mark.asyncio
    async def test_listening_states_follow_their_prompt(self):
        rig = build_rig([
            "Sarah Johnson", "the Camry", "one hour", "$70", "done",
            "yes", "Wiper blades", "half an hour", "twenty", "no",
        ])
        session = await rig.orchestrator.run()

        trace = session.machine.get_state_trace()
        for index, state in enumerate(trace):
            if state.startswith("listening_"):
                assert trace[index - 1] == state.replace("listening_", "asking_")

    @pytest.mark.asyncio
    async def test_every_user_turn_follows_an_assistant_turn(self):
        rig = build_rig(["John Smith", "Oil change one hour", "eighty", "no"])
        session = await rig.orchestrator.run()

        speakers = [turn.speaker for turn in session.transcript_log]
        for index, speaker in enumerate(speakers):
            if speaker == Speaker.USER:
                assert speakers[index - 1] == Speaker.ASSISTANT

    @pytest.mark.asyncio
    async def test_run_twice_concurrently_is_rejected(self):
        rig = build_rig(["John Smith"], ceiling_sec=5.0)
        task = asyncio.create_task(rig.orchestrator.run())
        await wait_until_recording(rig)

        with pytest.raises(RuntimeError):
            await rig.orchestrator.run()
        rig.orchestrator.cancel()
        await task
