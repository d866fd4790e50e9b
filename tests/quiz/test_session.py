from __future__ import annotations

import asyncio

import pytest

from snap_quiz.gateway.errors import (
    MalformedResponseError,
    RateLimitedError,
    SafetyBlockedError,
    ServerTransientError,
)
from snap_quiz.gateway.health import HealthMonitor, RequestRecord
from snap_quiz.quiz import messages
from snap_quiz.quiz.models import (
    AnswerResult,
    ImageAttachment,
    Mode,
    Persona,
    Stage,
)
from snap_quiz.quiz.session import QuizSession, SessionStateError

from support import make_questions

IMAGES = [ImageAttachment("page.png", b"png", "image/png")]


class FakeGenerator:
    """Stand-in for QuizGenerator with scripted outcomes."""

    def __init__(self):
        self.batches = []
        self.batch_calls = []
        self.explanations = []
        self.explanation_calls = 0
        self.advice = []
        self.advice_calls = []
        self.gate = None
        self.explanation_gate = None

    async def generate_question_batch(
        self, images, mode, persona, avoid=None, progress=None
    ):
        self.batch_calls.append(
            {"images": images, "mode": mode, "persona": persona, "avoid": avoid}
        )
        if progress is not None:
            progress("working")
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.batches.pop(0) if self.batches else make_questions()
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_detailed_explanation(self, question, persona):
        self.explanation_calls += 1
        await asyncio.sleep(0)
        if self.explanation_gate is not None:
            await self.explanation_gate.wait()
        outcome = (
            self.explanations.pop(0)
            if self.explanations
            else f"Details for {question.id}"
        )
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_advice(self, questions, results, persona):
        self.advice_calls.append((list(questions), list(results), persona))
        outcome = self.advice.pop(0) if self.advice else "Well done!"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def make_session(clock, generator=None, *, record=None, **kwargs):
    generator = generator or FakeGenerator()
    record = record or RequestRecord()
    kwargs.setdefault("feedback_delay", 0)
    session = QuizSession(
        generator,
        HealthMonitor(record, clock=clock),
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )
    return session, generator


async def started(session):
    session.set_images(IMAGES)
    assert await session.start()
    return session


async def answer_and_advance(session, option):
    assert session.record_answer(option)
    await session.wait_for_feedback()
    await session.advance()


def test_start_installs_questions_and_plays(clock):
    session, generator = make_session(clock)

    asyncio.run(started(session))

    assert session.stage is Stage.PLAYING
    assert len(session.questions) == 10
    assert session.current_question_index == 0
    assert session.results == []
    assert generator.batch_calls[0]["avoid"] is None


def test_start_forwards_mode_persona_and_progress(clock):
    session, generator = make_session(clock)
    seen = []

    async def scenario():
        session.select_mode(Mode.QUIZ)
        session.select_persona(Persona.TRICKY)
        session.set_images(IMAGES)
        await session.start(seen.append)

    asyncio.run(scenario())

    call = generator.batch_calls[0]
    assert call["mode"] is Mode.QUIZ
    assert call["persona"] is Persona.TRICKY
    assert call["images"] == tuple(IMAGES)
    assert seen == ["working"]


def test_answer_records_elapsed_time_for_third_question(clock):
    session, _ = make_session(clock)

    async def scenario():
        await started(session)
        await answer_and_advance(session, 0)
        await answer_and_advance(session, 0)
        clock.advance(2.4)
        correct = session.current_question.correct_option_index
        session.record_answer(correct)
        await session.wait_for_feedback()

    asyncio.run(scenario())

    assert session.results[2] == AnswerResult(
        question_index=2, is_correct=True, elapsed_seconds=2.4
    )
    assert session.stage is Stage.FEEDBACK


def test_full_run_reaches_summary_with_score(clock):
    session, generator = make_session(clock)

    async def scenario():
        await started(session)
        for index, question in enumerate(list(session.questions)):
            pick = question.correct_option_index
            if index >= 7:
                pick = (pick + 1) % 4
            await answer_and_advance(session, pick)

    asyncio.run(scenario())

    assert session.stage is Stage.SUMMARY
    assert session.score == 70
    assert session.correct_count == 7
    assert session.advice_text == "Well done!"
    questions, results, persona = generator.advice_calls[0]
    assert len(results) == 10
    assert persona is Persona.GENTLE


def test_advice_failure_uses_fallback(clock):
    session, generator = make_session(clock)
    generator.advice.append(ServerTransientError("503"))

    async def scenario():
        await started(session)
        for _ in range(10):
            await answer_and_advance(session, 0)

    asyncio.run(scenario())

    assert session.stage is Stage.SUMMARY
    assert session.advice_text
    assert session.advice_text in messages._ADVICE_FALLBACKS[Persona.GENTLE]


def test_second_answer_is_ignored(clock):
    session, _ = make_session(clock, feedback_delay=0.4)

    async def scenario():
        await started(session)
        first = session.record_answer(1)
        clock.advance(1.0)
        second = session.record_answer(2)
        await session.wait_for_feedback()
        third = session.record_answer(3)
        return first, second, third

    first, second, third = asyncio.run(scenario())

    assert (first, second, third) == (True, False, False)
    assert len(session.results) == 1
    assert session.results[0].elapsed_seconds == 0.0
    assert session.results[0].is_correct is (
        session.questions[0].correct_option_index == 1
    )


def test_feedback_transition_waits_for_delay(clock):
    session, _ = make_session(clock, feedback_delay=0.4)

    async def scenario():
        await started(session)
        session.record_answer(0)
        stage_before = session.stage
        await session.wait_for_feedback()
        return stage_before

    stage_before = asyncio.run(scenario())

    assert stage_before is Stage.PLAYING
    assert session.stage is Stage.FEEDBACK
    assert clock.sleeps == [0.4]


def test_abort_during_feedback_delay_stays_on_title(clock):
    session, _ = make_session(clock, feedback_delay=0.4)

    async def scenario():
        await started(session)
        session.record_answer(0)
        session.abort()
        await asyncio.sleep(0)
        await session.wait_for_feedback()

    asyncio.run(scenario())

    assert session.stage is Stage.TITLE
    assert session.results == []


def test_explanation_is_fetched_once_and_cached(clock):
    session, generator = make_session(clock)

    async def scenario():
        await started(session)
        session.record_answer(3)
        await session.wait_for_feedback()
        first = await session.request_explanation()
        second = await session.request_explanation()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == second == "Details for q0"
    assert generator.explanation_calls == 1
    assert session.explanation_for("q0") == "Details for q0"


def test_concurrent_explanation_requests_share_one_call(clock):
    session, generator = make_session(clock)

    async def scenario():
        await started(session)
        session.record_answer(0)
        await session.wait_for_feedback()
        return await asyncio.gather(
            session.request_explanation(), session.request_explanation()
        )

    texts = asyncio.run(scenario())

    assert texts == ["Details for q0", "Details for q0"]
    assert generator.explanation_calls == 1


def test_cancelled_explanation_waiter_keeps_shared_call(clock):
    session, generator = make_session(clock)

    async def scenario():
        generator.explanation_gate = asyncio.Event()
        await started(session)
        session.record_answer(1)
        await session.wait_for_feedback()
        impatient = asyncio.create_task(session.request_explanation())
        patient = asyncio.create_task(session.request_explanation())
        for _ in range(3):
            await asyncio.sleep(0)
        impatient.cancel()
        await asyncio.sleep(0)
        generator.explanation_gate.set()
        return impatient, await patient

    impatient, text = asyncio.run(scenario())

    assert impatient.cancelled()
    assert text == "Details for q0"
    assert generator.explanation_calls == 1
    assert session.explanation_for("q0") == "Details for q0"


def test_explanation_failure_falls_back_without_caching(clock):
    session, generator = make_session(clock)
    generator.explanations.append(RateLimitedError("429"))

    async def scenario():
        await started(session)
        session.record_answer(0)
        await session.wait_for_feedback()
        first = await session.request_explanation()
        second = await session.request_explanation()
        return first, second

    first, second = asyncio.run(scenario())

    assert first == messages.EXPLANATION_FALLBACK
    assert second == "Details for q0"
    assert generator.explanation_calls == 2


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (SafetyBlockedError("no"), "These pictures could not be used."),
        (MalformedResponseError("bad"), "Could not create the quiz."),
        (ServerTransientError("503"), "Could not create the quiz."),
    ],
)
def test_start_failure_returns_to_title(clock, error, expected):
    session, generator = make_session(clock)
    generator.batches.append(error)

    async def scenario():
        session.set_images(IMAGES)
        return await session.start()

    assert asyncio.run(scenario()) is False
    assert session.stage is Stage.TITLE
    assert session.status_message.startswith(expected)
    assert session.images == tuple(IMAGES)
    assert session.questions == []


def test_rate_limited_start_reports_cooldown(clock):
    record = RequestRecord()
    record.record_rate_limited(clock() - 15)
    session, generator = make_session(clock, record=record)
    generator.batches.append(RateLimitedError("quota"))

    async def scenario():
        session.set_images(IMAGES)
        return await session.start()

    asyncio.run(scenario())

    assert session.stage is Stage.TITLE
    assert session.status_message == (
        "The AI needs a short break. Please wait about 45 seconds."
    )


def test_replay_sends_avoid_list_and_resets(clock):
    session, generator = make_session(clock)

    async def scenario():
        await started(session)
        for _ in range(10):
            await answer_and_advance(session, 0)
        previous = [question.prompt_text for question in session.questions]
        assert await session.replay()
        return previous

    previous = asyncio.run(scenario())

    assert generator.batch_calls[1]["avoid"] == previous
    assert generator.batch_calls[1]["images"] == tuple(IMAGES)
    assert session.stage is Stage.PLAYING
    assert session.results == []
    assert session.advice_text is None


def test_replay_failure_keeps_images_on_title(clock):
    session, generator = make_session(clock)

    async def scenario():
        await started(session)
        for _ in range(10):
            await answer_and_advance(session, 0)
        generator.batches.append(ServerTransientError("503"))
        return await session.replay()

    assert asyncio.run(scenario()) is False
    assert session.stage is Stage.TITLE
    assert session.images == tuple(IMAGES)


def test_abort_resets_but_keeps_selection(clock):
    session, _ = make_session(clock)

    async def scenario():
        session.select_mode(Mode.QUIZ)
        session.select_persona(Persona.TRICKY)
        await started(session)
        session.record_answer(0)
        await session.wait_for_feedback()
        await session.request_explanation()
        session.abort()

    asyncio.run(scenario())

    assert session.stage is Stage.TITLE
    assert session.mode is Mode.QUIZ
    assert session.persona is Persona.TRICKY
    assert session.images == ()
    assert session.questions == []
    assert session.results == []
    assert session.current_question_index == 0
    assert session.advice_text is None
    assert session.explanation_for("q0") is None


def test_abort_while_generating_ignores_late_result(clock):
    session, generator = make_session(clock)

    async def scenario():
        generator.gate = asyncio.Event()
        session.set_images(IMAGES)
        task = asyncio.create_task(session.start())
        await asyncio.sleep(0)
        assert session.stage is Stage.GENERATING
        session.abort()
        generator.gate.set()
        return await task

    assert asyncio.run(scenario()) is False
    assert session.stage is Stage.TITLE
    assert session.questions == []


def test_stage_guards(clock):
    session, _ = make_session(clock, max_images=1)

    with pytest.raises(SessionStateError):
        asyncio.run(session.advance())
    with pytest.raises(SessionStateError):
        asyncio.run(session.start())
    with pytest.raises(ValueError):
        session.set_images(IMAGES * 2)
    assert session.record_answer(0) is False

    asyncio.run(started(session))

    with pytest.raises(SessionStateError):
        session.select_mode(Mode.QUIZ)
    with pytest.raises(SessionStateError):
        asyncio.run(session.request_explanation())


def test_rate_limit_through_real_generator_trips_health(clock, completions):
    from snap_quiz.gateway.health import HealthState
    from snap_quiz.gateway.orchestrator import RequestOrchestrator
    from snap_quiz.quiz.protocol import QuizGenerator

    record = RequestRecord()
    orchestrator = RequestOrchestrator(
        record=record, clock=clock, sleep=clock.sleep
    )
    generator = QuizGenerator(orchestrator, completions)
    session, _ = make_session(clock, generator, record=record)
    completions.queue(RuntimeError("429 You exceeded your current quota"))

    async def scenario():
        session.set_images(IMAGES)
        try:
            return await session.start()
        finally:
            await orchestrator.aclose()

    assert asyncio.run(scenario()) is False
    assert len(completions.calls) == 1
    status = session.health_status()
    assert status.state is HealthState.ERROR
    assert status.remaining_seconds == 60
    assert session.status_message.endswith("Please wait about 60 seconds.")


def test_start_on_closed_lane_returns_to_title(clock, completions):
    from snap_quiz.gateway.orchestrator import RequestOrchestrator
    from snap_quiz.quiz.protocol import QuizGenerator

    record = RequestRecord()
    orchestrator = RequestOrchestrator(record=record, clock=clock, sleep=clock.sleep)
    session, _ = make_session(
        clock, QuizGenerator(orchestrator, completions), record=record
    )

    async def scenario():
        await orchestrator.aclose()
        session.set_images(IMAGES)
        return await session.start()

    assert asyncio.run(scenario()) is False
    assert session.stage is Stage.TITLE
    assert session.images == tuple(IMAGES)
    assert session.status_message == "Could not create the quiz. Please try again."
    assert completions.calls == []
