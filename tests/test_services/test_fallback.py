import asyncio
from unittest.mock import AsyncMock

import pytest

from app.exceptions.custom import BlandError, FallbackError, TwilioError
from app.schemas.bland import CallDetailsResponse, OutboundCallResponse, TranscriptEntry
from app.schemas.call import CallState
from app.schemas.complaint import ContactDetails
from app.schemas.llm import FieldExtraction
from app.services.bland import BlandService
from app.services.fallback import FallbackCoordinator
from app.services.information_extractor import InformationExtractor
from app.services.twilio_control import TwilioCallControlService


async def _no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def telephony():
    mock = AsyncMock(spec=BlandService)
    mock.place_call.return_value = OutboundCallResponse(status="success", call_id="side-1")
    mock.get_call.return_value = CallDetailsResponse(
        call_id="side-1",
        status="completed",
        transcript=[
            TranscriptEntry(user="assistant", text="What is your account number?"),
            TranscriptEntry(user="user", text="It's AC-778812"),
        ],
    )
    return mock


@pytest.fixture
def control():
    return AsyncMock(spec=TwilioCallControlService)


@pytest.fixture
def extractor():
    mock = AsyncMock(spec=InformationExtractor)
    mock.extract_requested_fields.return_value = FieldExtraction(
        fields={"account_number": "AC-778812"}
    )
    return mock


@pytest.fixture
def coordinator(telephony, control, extractor, store):
    return FallbackCoordinator(
        telephony,
        control,
        extractor,
        store,
        default_callback_number="+18005550000",
        sleep=_no_sleep,
    )


async def test_episode_holds_calls_customer_and_resumes(
    coordinator, telephony, control, extractor, store, make_context
):
    context = make_context()
    states: list[CallState] = []

    result = await coordinator.handle_fallback(
        "CA1", context, ["account_number"], on_state=states.append
    )

    control.hold.assert_awaited_once_with("CA1")
    control.resume.assert_awaited_once_with("CA1")
    assert telephony.place_call.call_args.args[0] == "+14155550199"
    assert result.call_resumed is True
    assert result.user_responses == {"account_number": "AC-778812"}
    assert context.extracted_fields["account_number"] == "AC-778812"
    assert states == [CallState.on_hold, CallState.user_callback, CallState.resumed]
    extractor.extract_requested_fields.assert_awaited_once()

    episode = store.get("c-1")["fallbacks"][0]
    assert episode["phone_number"] == "+14155550199"
    assert episode["phone_source"] == "customer_details"
    assert episode["fields"] == ["account_number"]
    assert episode["responses"] == {"account_number": "AC-778812"}
    assert store.load_context("c-1").extracted_fields["account_number"] == "AC-778812"


async def test_hold_failure_is_fatal_and_nothing_else_happens(
    coordinator, telephony, control, make_context
):
    control.hold.side_effect = TwilioError("call not found", status_code=404)

    with pytest.raises(FallbackError):
        await coordinator.handle_fallback("CA1", make_context(), ["account_number"])

    telephony.place_call.assert_not_called()
    control.resume.assert_not_called()
    assert coordinator._locks == {}


async def test_answers_relayed_after_resume(coordinator, control, store, make_context):
    events: list[str] = []
    control.hold.side_effect = lambda sid: events.append("hold")
    control.resume.side_effect = lambda sid: events.append("resume")
    control.say.side_effect = lambda sid, text: events.append(text)

    await coordinator.handle_fallback("CA1", make_context(), ["account_number"])

    assert events[:2] == ["hold", "resume"]
    assert len(events) == 3
    assert "AC-778812" in events[2]
    assert "account number" in events[2]
    control.say.assert_awaited_once()
    assert control.say.call_args.args[0] == "CA1"
    assert store.get("c-1")["fallbacks"][0]["relayed"] is True


async def test_nothing_relayed_without_answers(coordinator, telephony, control, make_context):
    telephony.place_call.side_effect = BlandError("busy", status_code=500)

    await coordinator.handle_fallback("CA1", make_context(), ["order_number"])

    control.say.assert_not_called()


async def test_relay_failure_keeps_call_resumed(coordinator, control, store, make_context):
    control.say.side_effect = TwilioError("call not in progress", status_code=400)

    result = await coordinator.handle_fallback("CA1", make_context(), ["account_number"])

    assert result.call_resumed is True
    assert result.user_responses == {"account_number": "AC-778812"}
    episode = store.get("c-1")["fallbacks"][0]
    assert episode["relayed"] is False
    assert "Relay failed" in episode["error"]


async def test_side_call_failure_still_resumes(coordinator, telephony, control, store, make_context):
    telephony.place_call.side_effect = BlandError("busy", status_code=500)

    result = await coordinator.handle_fallback("CA1", make_context(), ["order_number"])

    control.resume.assert_awaited_once_with("CA1")
    assert result.call_resumed is True
    assert result.user_responses == {}
    assert "busy" in store.get("c-1")["fallbacks"][0]["error"]


async def test_side_call_remote_failure_recorded(coordinator, telephony, control, store, make_context):
    telephony.get_call.return_value = CallDetailsResponse(call_id="side-1", status="no-answer")

    result = await coordinator.handle_fallback("CA1", make_context(), ["order_number"])

    assert result.user_responses == {}
    assert "no-answer" in store.get("c-1")["fallbacks"][0]["error"]
    control.resume.assert_awaited_once()


async def test_resume_failure_raises(coordinator, control, store, make_context):
    control.resume.side_effect = TwilioError("gone", status_code=404)

    with pytest.raises(FallbackError):
        await coordinator.handle_fallback("CA1", make_context(), ["account_number"])

    assert "Resume failed" in store.get("c-1")["fallbacks"][0]["error"]


async def test_without_call_control_raises(telephony, extractor, store, make_context):
    coordinator = FallbackCoordinator(telephony, None, extractor, store, sleep=_no_sleep)
    with pytest.raises(FallbackError):
        await coordinator.handle_fallback("CA1", make_context(), ["account_number"])


def test_callback_number_order(coordinator, make_context):
    assert coordinator.resolve_callback_number(make_context()) == (
        "+14155550199",
        "customer_details",
    )
    assert coordinator.resolve_callback_number(make_context(customer_details=None)) == (
        "+14155550100",
        "contact_details",
    )
    no_phones = make_context(customer_details=None, contact_details=ContactDetails())
    assert coordinator.resolve_callback_number(no_phones) == ("+18005550000", "default")


async def test_no_callback_number_records_error(telephony, control, extractor, store, make_context):
    coordinator = FallbackCoordinator(telephony, control, extractor, store, sleep=_no_sleep)
    context = make_context(customer_details=None, contact_details=ContactDetails())
    states: list[CallState] = []

    result = await coordinator.handle_fallback(
        "CA1", context, ["account_number"], on_state=states.append
    )

    telephony.place_call.assert_not_called()
    assert result.call_resumed is True
    assert states == [CallState.on_hold, CallState.resumed]
    assert store.get("c-1")["fallbacks"][0]["error"] == "No callback number available"


async def test_episodes_on_same_call_do_not_overlap(coordinator, control, make_context):
    events: list[str] = []

    async def hold(call_id):
        events.append("hold")
        await asyncio.sleep(0)

    async def resume(call_id):
        events.append("resume")
        await asyncio.sleep(0)

    control.hold.side_effect = hold
    control.resume.side_effect = resume

    await asyncio.gather(
        coordinator.handle_fallback("CA1", make_context(), ["account_number"]),
        coordinator.handle_fallback("CA1", make_context(), ["order_number"]),
    )

    assert events == ["hold", "resume", "hold", "resume"]
    assert coordinator._locks == {}
    assert coordinator._lock_users == {}


def test_detect_uses_configured_triggers(coordinator):
    transcript = [TranscriptEntry(user="user", text="I cannot proceed without the order number")]
    assert coordinator.detect(transcript) == ["order_number"]
