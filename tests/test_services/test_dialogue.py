from unittest.mock import AsyncMock

import pytest

from app.exceptions.custom import DialogueStateError, TurnNotFoundError
from app.mappers.question_policy import FIRST_QUESTION, SECOND_QUESTION
from app.schemas.complaint import CompanyInfo, ComplaintContext, CustomerDetails
from app.schemas.llm import ContinueDecision, FieldExtraction, GeneratedQuestion
from app.services.dialogue import DialogueEngine, context_fingerprint
from app.services.information_extractor import InformationExtractor

GOOD_QUESTION = "On what date did the second charge appear on your statement?"


@pytest.fixture
def extractor():
    mock = AsyncMock(spec=InformationExtractor)
    mock.decide_continue.return_value = ContinueDecision(should_continue=True)
    mock.generate_question.return_value = GeneratedQuestion(question=GOOD_QUESTION)
    mock.extract_fields.return_value = FieldExtraction()
    mock.pre_analyze.return_value = FieldExtraction()
    return mock


@pytest.fixture
def engine(extractor, store):
    return DialogueEngine(extractor, store, max_questions=4)


async def test_start_merges_features_customer_and_pre_analysis(engine, extractor, store):
    extractor.pre_analyze.return_value = FieldExtraction(
        fields={"issue": "double charge", "product": "internet"}
    )
    complaint = ComplaintContext(
        raw_text="Charged twice", confidence=0.6, extracted_features={"amount": "59.99"}
    )

    context = await engine.start(
        "c-9",
        complaint,
        CompanyInfo(name="Acme Telecom"),
        customer=CustomerDetails(name="Jordan Lee", phone="+14155550199"),
    )

    assert context.extracted_fields == {
        "amount": "59.99",
        "name": "Jordan Lee",
        "phone": "+14155550199",
        "issue": "double charge",
        "product": "internet",
    }
    assert context.issue == "double charge"
    assert context.product == "internet"
    assert context.company == "Acme Telecom"
    assert context.final_confidence == 0.6
    assert store.load_context("c-9") is not None


async def test_start_caller_data_beats_pre_analysis(engine, extractor):
    extractor.pre_analyze.return_value = FieldExtraction(
        fields={"name": "Jay", "phone": "+15555550000", "amount": "60", "issue": "billing"}
    )
    complaint = ComplaintContext(raw_text="Charged twice", extracted_features={"amount": "59.99"})

    context = await engine.start(
        "c-9",
        complaint,
        CompanyInfo(name="Acme Telecom"),
        customer=CustomerDetails(name="Jordan Lee", phone="+14155550199"),
    )

    assert context.extracted_fields["name"] == "Jordan Lee"
    assert context.extracted_fields["phone"] == "+14155550199"
    assert context.extracted_fields["amount"] == "59.99"
    assert context.extracted_fields["issue"] == "billing"


async def test_stops_immediately_when_policy_says_stop(engine, extractor, make_context):
    extractor.decide_continue.return_value = ContinueDecision(should_continue=False)
    context = make_context(initial_confidence=0.9, final_confidence=0.9)

    result = await engine.advance(context)

    assert result.ready is True
    assert result.conversation_history == []
    extractor.generate_question.assert_not_called()


async def test_hard_cap_ignores_policy(extractor, store, make_context):
    engine = DialogueEngine(extractor, store, max_questions=2)
    context = make_context(answers=["Monday", "A refund"])

    result = await engine.advance(context)

    assert result.ready is True
    assert len(result.conversation_history) == 2
    extractor.decide_continue.assert_not_called()


async def test_decision_failure_stops(engine, extractor, make_context):
    extractor.decide_continue.return_value = None
    result = await engine.advance(make_context())
    assert result.ready is True


async def test_advance_appends_pending_turn(engine, store, make_context):
    result = await engine.advance(make_context())

    assert result.ready is False
    assert result.pending_turn.question == GOOD_QUESTION
    saved = store.load_context("c-1")
    assert saved.pending_turn.question == GOOD_QUESTION


async def test_no_new_question_while_pending(engine, extractor, make_context):
    context = await engine.advance(make_context())
    context = await engine.advance(context)

    assert len(context.conversation_history) == 1
    assert extractor.generate_question.await_count == 1


async def test_vague_question_regenerated_then_template(engine, extractor, make_context):
    extractor.generate_question.return_value = GeneratedQuestion(
        question="Can you provide more details about it?"
    )

    result = await engine.advance(make_context())

    assert extractor.generate_question.await_count == 2
    assert result.pending_turn.question == FIRST_QUESTION


async def test_second_attempt_used_when_valid(engine, extractor, make_context):
    extractor.generate_question.side_effect = [
        GeneratedQuestion(question="Why?"),
        GeneratedQuestion(question=GOOD_QUESTION),
    ]
    result = await engine.advance(make_context())
    assert result.pending_turn.question == GOOD_QUESTION


async def test_template_keyed_by_answered_count(engine, extractor, make_context):
    extractor.generate_question.return_value = None
    result = await engine.advance(make_context(answers=["Monday"]))
    assert result.pending_turn.question == SECOND_QUESTION


async def test_repeated_question_rejected(engine, extractor, make_context):
    extractor.generate_question.return_value = GeneratedQuestion(question="Question number 1?")
    result = await engine.advance(make_context(answers=["Monday"]))
    assert result.pending_turn.question == SECOND_QUESTION


async def test_submit_answer_round_trip(engine, extractor, store, make_context):
    extractor.extract_fields.return_value = FieldExtraction(fields={"date": "March 3rd"})
    context = await engine.advance(make_context())
    turn_id = context.pending_turn.id

    await engine.submit_answer(context, turn_id, "It was on March 3rd")

    saved = store.load_context("c-1")
    turn = saved.conversation_history[saved.find_turn(turn_id)]
    assert turn.answer == "It was on March 3rd"
    assert turn.confidence_delta == 0.2
    assert turn.extracted_info == {"date": "March 3rd"}
    assert saved.extracted_fields["date"] == "March 3rd"
    assert saved.final_confidence == pytest.approx(0.7)


async def test_submit_answer_without_facts_gets_small_delta(engine, make_context):
    context = await engine.advance(make_context())
    context = await engine.submit_answer(context, context.pending_turn.id, "Not sure")
    assert context.conversation_history[0].confidence_delta == 0.1


async def test_submit_answer_uses_prior_turns_only(engine, extractor, make_context):
    context = make_context(answers=["Monday", "", ""])
    # Two pending turns cannot happen through advance; built by hand to check slicing
    target = context.conversation_history[1]

    await engine.submit_answer(context, target.id, "A refund")

    prior = extractor.extract_fields.call_args.args[1]
    assert [t.question for t in prior] == ["Question number 1?"]


async def test_later_answer_overrides_field(engine, extractor, make_context):
    context = make_context(answers=[""])
    context.extracted_fields["date"] = "March"
    extractor.extract_fields.return_value = FieldExtraction(fields={"date": "March 3rd"})

    context = await engine.submit_answer(context, context.conversation_history[0].id, "The 3rd")

    assert context.extracted_fields["date"] == "March 3rd"


async def test_unknown_turn_raises(engine, make_context):
    with pytest.raises(TurnNotFoundError):
        await engine.submit_answer(make_context(answers=[""]), "missing", "Monday")


async def test_answering_twice_raises(engine, make_context):
    context = make_context(answers=["Monday"])
    with pytest.raises(DialogueStateError):
        await engine.submit_answer(context, context.conversation_history[0].id, "Tuesday")


async def test_blank_answer_raises(engine, make_context):
    context = make_context(answers=[""])
    with pytest.raises(DialogueStateError):
        await engine.submit_answer(context, context.conversation_history[0].id, "   ")


async def test_should_continue_is_idempotent(engine, extractor, make_context):
    extractor.decide_continue.side_effect = [
        ContinueDecision(should_continue=True),
        ContinueDecision(should_continue=False),
    ]
    context = make_context(answers=["Monday"])

    first = await engine.should_continue(context)
    second = await engine.should_continue(context)

    assert first == second is True
    assert extractor.decide_continue.await_count == 1


async def test_should_continue_reasks_after_change(engine, extractor, make_context):
    context = make_context(answers=["Monday"])
    await engine.should_continue(context)
    context.extracted_fields["amount"] = "59.99"
    await engine.should_continue(context)
    assert extractor.decide_continue.await_count == 2


def test_fingerprint_changes_with_answers(make_context):
    assert context_fingerprint(make_context(answers=["a"])) != context_fingerprint(
        make_context(answers=["b"])
    )


async def test_answered_turns_never_exceed_max(extractor, store, make_context):
    engine = DialogueEngine(extractor, store, max_questions=3)
    context = make_context()

    for _ in range(10):
        context = await engine.advance(context)
        if context.ready:
            break
        context = await engine.submit_answer(context, context.pending_turn.id, "Some answer")

    assert context.ready is True
    assert len(context.answered_turns) == 3
    assert context.final_confidence <= 1.0
