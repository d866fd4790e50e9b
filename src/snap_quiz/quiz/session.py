"""Quiz session state machine.

Stages move ``TITLE -> GENERATING -> PLAYING <-> FEEDBACK -> ANALYZING ->
SUMMARY``. A failed generation returns to ``TITLE`` with a status message and
:meth:`QuizSession.abort` returns to ``TITLE`` from anywhere. Remote results
that arrive after an abort are dropped; the orchestrator still records their
dispatches so health reporting stays accurate.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..gateway.errors import FailureCategory, GenerationError
from ..gateway.health import HealthMonitor, HealthStatus
from . import messages as copy
from .models import (
    OPTION_COUNT,
    TOTAL_QUESTIONS,
    AnswerResult,
    ImageAttachment,
    Mode,
    Persona,
    Question,
    Stage,
    score_percent,
)
from .protocol import ProgressCallback, QuizGenerator

__all__ = ["QuizSession", "SessionStateError", "DEFAULT_FEEDBACK_DELAY"]

logger = logging.getLogger(__name__)

DEFAULT_FEEDBACK_DELAY = 0.4
DEFAULT_MAX_IMAGES = 10

Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[Any]]


class SessionStateError(RuntimeError):
    """Raised when an operation is invoked from the wrong stage."""


class QuizSession:
    """Drive one player's quiz from image selection to the summary."""

    def __init__(
        self,
        generator: QuizGenerator,
        health: HealthMonitor,
        *,
        total_questions: int = TOTAL_QUESTIONS,
        feedback_delay: float = DEFAULT_FEEDBACK_DELAY,
        max_images: int = DEFAULT_MAX_IMAGES,
        mode: Mode = Mode.STUDY,
        persona: Persona = Persona.GENTLE,
        clock: Clock = time.monotonic,
        sleep: Sleeper = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._generator = generator
        self._health = health
        self.total_questions = total_questions
        self.feedback_delay = feedback_delay
        self.max_images = max_images
        self._clock = clock
        self._sleep = sleep
        self._rng = rng

        self.stage = Stage.TITLE
        self.mode = mode
        self.persona = persona
        self.images: tuple[ImageAttachment, ...] = ()
        self.questions: List[Question] = []
        self.current_question_index = 0
        self.results: List[AnswerResult] = []
        self.advice_text: Optional[str] = None
        self.status_message: Optional[str] = None

        self._epoch = 0
        self._question_started_at: Optional[float] = None
        self._feedback_task: Optional[asyncio.Task[None]] = None
        self._explanations: Dict[str, str] = {}
        self._explanation_tasks: Dict[str, asyncio.Task[str]] = {}

    # ------------------------------------------------------------------
    # Read helpers

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def current_result(self) -> Optional[AnswerResult]:
        if self.current_question_index < len(self.results):
            return self.results[self.current_question_index]
        return None

    @property
    def score(self) -> int:
        return score_percent(self.results, self.total_questions)

    @property
    def correct_count(self) -> int:
        return sum(1 for result in self.results if result.is_correct)

    def explanation_for(self, question_id: str) -> Optional[str]:
        return self._explanations.get(question_id)

    def health_status(self) -> HealthStatus:
        return self._health.get_status()

    # ------------------------------------------------------------------
    # Title setup

    def set_images(self, images: Sequence[ImageAttachment]) -> None:
        self._require_stage(Stage.TITLE, "set_images")
        if len(images) > self.max_images:
            raise ValueError(
                f"At most {self.max_images} images can be used at once."
            )
        self.images = tuple(images)
        self.status_message = None

    def select_mode(self, mode: Mode) -> None:
        self._require_stage(Stage.TITLE, "select_mode")
        self.mode = mode

    def select_persona(self, persona: Persona) -> None:
        self._require_stage(Stage.TITLE, "select_persona")
        self.persona = persona

    # ------------------------------------------------------------------
    # Transitions

    async def start(self, progress: Optional[ProgressCallback] = None) -> bool:
        """Generate a batch from the selected images and begin playing.

        Returns ``True`` when the session reached ``PLAYING``. On failure the
        session is back on ``TITLE`` with :attr:`status_message` set.
        """

        self._require_stage(Stage.TITLE, "start")
        if not self.images:
            raise SessionStateError("Select at least one image before starting.")
        return await self._generate(avoid=None, progress=progress)

    async def replay(self, progress: Optional[ProgressCallback] = None) -> bool:
        """Play again with the same images, hinting away from past questions."""

        self._require_stage(Stage.SUMMARY, "replay")
        avoid = [question.prompt_text for question in self.questions]
        if progress is not None:
            progress(copy.PROGRESS_REPLAY)
        return await self._generate(avoid=avoid, progress=progress)

    def record_answer(self, option_index: int) -> bool:
        """Record the pick for the current question.

        Only the first pick per question counts; later calls return
        ``False`` and change nothing. The move to ``FEEDBACK`` happens after
        :attr:`feedback_delay` seconds.
        """

        if self.stage is not Stage.PLAYING:
            return False
        if len(self.results) > self.current_question_index:
            return False
        if not 0 <= option_index < OPTION_COUNT:
            raise ValueError(f"option_index must be in [0, {OPTION_COUNT - 1}]")
        question = self.questions[self.current_question_index]
        started = self._question_started_at
        elapsed = 0.0 if started is None else max(0.0, self._clock() - started)
        result = AnswerResult(
            question_index=self.current_question_index,
            is_correct=question.is_correct(option_index),
            elapsed_seconds=round(elapsed, 3),
        )
        self.results.append(result)
        logger.info(
            "Answer recorded",
            extra={
                "question_index": result.question_index,
                "is_correct": result.is_correct,
                "elapsed_seconds": result.elapsed_seconds,
            },
        )
        if self.feedback_delay <= 0:
            self._transition(Stage.FEEDBACK)
        else:
            self._feedback_task = asyncio.get_running_loop().create_task(
                self._enter_feedback(self._epoch, self.current_question_index)
            )
        return True

    async def wait_for_feedback(self) -> None:
        """Wait for a pending move to ``FEEDBACK`` scheduled by an answer."""

        task = self._feedback_task
        if task is not None and not task.done():
            await task

    async def advance(self) -> None:
        """Move past the feedback screen.

        After the last question the session analyses the run and lands on
        ``SUMMARY`` with advice text, remote or canned.
        """

        self._require_stage(Stage.FEEDBACK, "advance")
        if self.current_question_index + 1 < len(self.questions):
            self.current_question_index += 1
            self._question_started_at = self._clock()
            self._transition(Stage.PLAYING)
            return

        epoch = self._epoch
        self._transition(Stage.ANALYZING)
        try:
            advice = await self._generator.generate_advice(
                list(self.questions), list(self.results), self.persona
            )
        except GenerationError as exc:
            logger.warning(
                "Advice unavailable, using fallback",
                extra={"category": exc.category.value},
            )
            advice = ""
        if epoch != self._epoch:
            logger.info("Dropping advice for an aborted session")
            return
        self.advice_text = advice or copy.advice_fallback(
            self.persona, self._rng
        )
        self._transition(Stage.SUMMARY)

    async def request_explanation(self) -> str:
        """Return the detailed explanation for the current question.

        A cached explanation is returned without contacting the service.
        Concurrent requests for one question share a single dispatch.
        Failures yield canned text that is not cached.
        """

        self._require_stage(Stage.FEEDBACK, "request_explanation")
        question = self.questions[self.current_question_index]
        cached = self._explanations.get(question.id)
        if cached is not None:
            return cached

        task = self._explanation_tasks.get(question.id)
        if task is None:
            task = asyncio.get_running_loop().create_task(
                self._fetch_explanation(question, self._epoch)
            )
            self._explanation_tasks[question.id] = task
        try:
            # A cancelled waiter must not cancel the shared dispatch.
            return await asyncio.shield(task)
        except GenerationError as exc:
            logger.warning(
                "Explanation unavailable, using fallback",
                extra={
                    "question_id": question.id,
                    "category": exc.category.value,
                },
            )
            return copy.EXPLANATION_FALLBACK

    def abort(self) -> None:
        """Return to ``TITLE`` and discard everything but mode and persona."""

        self._epoch += 1
        if self._feedback_task is not None and not self._feedback_task.done():
            self._feedback_task.cancel()
        self._feedback_task = None
        self.images = ()
        self._reset_run()
        self.status_message = None
        self._transition(Stage.TITLE)

    # ------------------------------------------------------------------
    # Internals

    async def _generate(
        self,
        *,
        avoid: Optional[List[str]],
        progress: Optional[ProgressCallback],
    ) -> bool:
        epoch = self._epoch
        self.status_message = None
        self._transition(Stage.GENERATING)
        try:
            questions = await self._generator.generate_question_batch(
                self.images,
                self.mode,
                self.persona,
                avoid=avoid,
                progress=progress,
            )
        except GenerationError as exc:
            if epoch != self._epoch:
                logger.info("Dropping failure for an aborted session")
                return False
            self._fail_generation(exc)
            return False
        if epoch != self._epoch:
            logger.info("Dropping questions for an aborted session")
            return False
        self._reset_run()
        self.questions = list(questions)
        self._question_started_at = self._clock()
        self._transition(Stage.PLAYING)
        return True

    def _fail_generation(self, exc: GenerationError) -> None:
        category = exc.category
        cooldown = (
            self._health.cooldown_remaining()
            if category is FailureCategory.RATE_LIMITED
            else 0
        )
        self._reset_run()
        self.status_message = copy.failure_message(
            category, cooldown_seconds=cooldown
        )
        logger.error(
            "Question generation failed",
            extra={"category": category.value, "cooldown_seconds": cooldown},
        )
        self._transition(Stage.TITLE)

    async def _enter_feedback(self, epoch: int, question_index: int) -> None:
        await self._sleep(self.feedback_delay)
        if (
            epoch != self._epoch
            or self.stage is not Stage.PLAYING
            or self.current_question_index != question_index
        ):
            return
        self._transition(Stage.FEEDBACK)

    async def _fetch_explanation(self, question: Question, epoch: int) -> str:
        try:
            text = await self._generator.generate_detailed_explanation(
                question, self.persona
            )
        finally:
            if self._explanation_tasks.get(question.id) is asyncio.current_task():
                del self._explanation_tasks[question.id]
        if epoch == self._epoch:
            self._store_explanation(question.id, text)
        return self._explanations.get(question.id, text)

    def _store_explanation(self, question_id: str, text: str) -> None:
        if question_id not in self._explanations:
            self._explanations[question_id] = text

    def _reset_run(self) -> None:
        self.questions = []
        self.results = []
        self.current_question_index = 0
        self.advice_text = None
        self._question_started_at = None
        self._explanations.clear()
        self._explanation_tasks.clear()

    def _require_stage(self, stage: Stage, action: str) -> None:
        if self.stage is not stage:
            raise SessionStateError(
                f"Cannot {action} while in stage '{self.stage.value}'."
            )

    def _transition(self, stage: Stage) -> None:
        previous = self.stage
        self.stage = stage
        logger.debug(
            "Session transition",
            extra={"from_stage": previous.value, "to_stage": stage.value},
        )
