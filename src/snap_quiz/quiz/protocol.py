"""Prompt construction and response parsing for quiz generation.

Every call is routed through :class:`RequestOrchestrator.submit`. Question
batches are parsed inside the submitted operation, so a malformed batch is
raised in the lane and classified as ``MALFORMED_RESPONSE`` (never retried).
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
import re
import uuid
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..gateway.errors import MalformedResponseError
from ..gateway.orchestrator import RequestOrchestrator
from . import messages as copy
from .client import CompletionClient
from .models import (
    OPTION_COUNT,
    OPTION_KEYS,
    TOTAL_QUESTIONS,
    AnswerResult,
    ImageAttachment,
    Mode,
    Persona,
    Question,
)

__all__ = ["QuizGenerator", "ProgressCallback", "parse_question_batch"]

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]
IdFactory = Callable[[], str]

_SYSTEM_PROMPT = (
    "You write multiple-choice quiz questions for school children from "
    "photos of their study material. Answer with JSON only when asked."
)
_PERSONA_STYLE = {
    Persona.GENTLE: "polite and clear, focused on the fundamentals",
    Persona.TRICKY: "a little mischievous, testing whether ideas can be applied",
}
_PERSONA_VOICE = {
    Persona.GENTLE: "a kind teacher who praises effort",
    Persona.TRICKY: "a playful teacher who likes a challenge",
}
_MODE_GOAL = {
    Mode.STUDY: "help the learner remember what the material teaches",
    Mode.QUIZ: "spark curiosity with fun trivia inspired by the material",
}
_SCHEMA_LINE = (
    '{"question": str, "options": [str, str, str, str], '
    '"correct_index": int (0-3), "explanation": str, '
    '"target_audience": str}'
)
_FENCED_JSON = re.compile(r"```(?:json)?\s*(.+?)```", re.DOTALL)

_TEXT_KEYS = ("question", "prompt_text", "promptText", "stem")
_OPTION_KEYS = ("options", "choices")
_ANSWER_KEYS = ("correct_index", "correctAnswerIndex", "answer")
_EXPLANATION_KEYS = ("explanation", "short_explanation")
_AUDIENCE_KEYS = ("target_audience", "targetAge", "estimated_audience")


def _default_id() -> str:
    return f"q-{uuid.uuid4().hex[:12]}"


class QuizGenerator:
    """Build requests for the remote model and validate what comes back."""

    def __init__(
        self,
        orchestrator: RequestOrchestrator,
        client: CompletionClient,
        *,
        total_questions: int = TOTAL_QUESTIONS,
        batch_max_tokens: int = 3000,
        text_max_tokens: int = 600,
        id_factory: IdFactory = _default_id,
    ) -> None:
        self._orchestrator = orchestrator
        self._client = client
        self.total_questions = total_questions
        self._batch_max_tokens = batch_max_tokens
        self._text_max_tokens = text_max_tokens
        self._id_factory = id_factory

    async def generate_question_batch(
        self,
        images: Sequence[ImageAttachment],
        mode: Mode,
        persona: Persona,
        avoid: Optional[Sequence[str]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> List[Question]:
        """Return exactly ``total_questions`` questions drawn from ``images``.

        ``avoid`` lists earlier question texts the model is asked not to
        repeat. It is a hint only; duplicates are not filtered out.
        """

        if not images:
            raise ValueError("at least one image is required")
        notify = progress or (lambda message: None)
        notify(copy.PROGRESS_PREPARING)
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    *(_image_part(image) for image in images),
                    {
                        "type": "text",
                        "text": build_batch_prompt(
                            self.total_questions, mode, persona, avoid
                        ),
                    },
                ],
            },
        ]

        async def attempt() -> List[Question]:
            notify(copy.PROGRESS_THINKING)
            content = await self._complete(messages, self._batch_max_tokens)
            notify(copy.PROGRESS_CHECKING)
            return parse_question_batch(
                content,
                total=self.total_questions,
                id_factory=self._id_factory,
            )

        questions = await self._orchestrator.submit(
            attempt, label="question_batch"
        )
        logger.info(
            "Generated question batch",
            extra={
                "images": len(images),
                "mode": mode.value,
                "persona": persona.value,
                "avoid_count": len(avoid or ()),
            },
        )
        return questions

    async def generate_detailed_explanation(
        self, question: Question, persona: Persona
    ) -> str:
        prompt = (
            f"Question: {question.prompt_text}\n"
            + "".join(
                f"{key}) {option}\n"
                for key, option in zip(OPTION_KEYS, question.options)
            )
            + f"Correct answer: {OPTION_KEYS[question.correct_option_index]}"
            f") {question.correct_option}\n"
            f"Short explanation: {question.short_explanation}\n\n"
            f"Speaking as {_PERSONA_VOICE[persona]}, explain in 3 to 5 "
            "sentences why the correct answer is right and why the other "
            "options are wrong. Write for "
            f"{question.estimated_audience or 'a school child'}."
        )
        return await self._free_text(prompt, label="detailed_explanation")

    async def generate_advice(
        self,
        questions: Sequence[Question],
        results: Sequence[AnswerResult],
        persona: Persona,
    ) -> str:
        correct = sum(1 for result in results if result.is_correct)
        missed = [
            questions[result.question_index].prompt_text
            for result in results
            if not result.is_correct and result.question_index < len(questions)
        ]
        prompt = (
            f"A student answered {correct} of {len(questions)} questions "
            "correctly."
        )
        if missed:
            prompt += " They missed these:\n" + "\n".join(
                f"- {text}" for text in missed
            )
        prompt += (
            f"\n\nSpeaking as {_PERSONA_VOICE[persona]}, write one short "
            "message (under 50 words) that motivates the student to keep "
            "learning."
        )
        return await self._free_text(prompt, label="advice")

    async def _free_text(self, prompt: str, *, label: str) -> str:
        messages = [
            {"role": "system", "content": _SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        async def attempt() -> str:
            content = await self._complete(messages, self._text_max_tokens)
            if not content:
                raise MalformedResponseError(f"Empty {label} response.")
            return content

        return await self._orchestrator.submit(attempt, label=label)

    async def _complete(
        self, messages: List[Dict[str, Any]], max_tokens: int
    ) -> str:
        return await asyncio.to_thread(
            self._client.complete, messages=messages, max_tokens=max_tokens
        )


def build_batch_prompt(
    total: int,
    mode: Mode,
    persona: Persona,
    avoid: Optional[Sequence[str]] = None,
) -> str:
    """Instructions sent alongside the images for a question batch."""

    lines = [
        "Analyse the study material in the attached images and write "
        f"{total} four-option multiple-choice questions about it.",
        "",
        "Rules:",
        "1. Never refer to the images (no 'look at the picture' or "
        "'in figure 1'). The player cannot see them while answering, so ask "
        "about the knowledge itself.",
        "2. Every question must stand on its own.",
        "3. Use simple wording a child can follow.",
        "",
        f"- Question style: {_PERSONA_STYLE[persona]}",
        f"- Goal: {_MODE_GOAL[mode]}",
        "- Difficulty: match the material and get slightly harder towards "
        "the end.",
        "- Explanations: point out the key idea from the material in about "
        "two sentences.",
    ]
    hints = [text.strip() for text in avoid or () if text and text.strip()]
    if hints:
        lines.append("")
        lines.append("Do not repeat these earlier questions:")
        lines.extend(f"- {text}" for text in hints)
    lines.extend(
        [
            "",
            f"Output only a JSON array of {total} objects with this schema:",
            _SCHEMA_LINE,
        ]
    )
    return "\n".join(lines)


def parse_question_batch(
    content: str,
    *,
    total: int = TOTAL_QUESTIONS,
    id_factory: IdFactory = _default_id,
) -> List[Question]:
    """Parse model output into exactly ``total`` questions.

    Invalid items are skipped. Short batches are padded by cycling through
    the valid items; long ones are truncated.

    Raises:
        MalformedResponseError: when the content is not a JSON array or no
            item survives validation.
    """

    records = _extract_json_array(content)
    valid = [
        question
        for question in (
            _build_question(record, id_factory()) for record in records
        )
        if question is not None
    ]
    if not valid:
        raise MalformedResponseError(
            "The AI response did not contain any usable questions."
        )
    if len(valid) != total:
        logger.warning(
            "Adjusting question batch size",
            extra={"received": len(valid), "expected": total},
        )
    batch = valid[:total]
    for source in itertools.cycle(valid):
        if len(batch) >= total:
            break
        batch.append(_with_id(source, id_factory()))
    return batch


def _extract_json_array(content: str) -> List[Any]:
    if not content or not content.strip():
        raise MalformedResponseError("The AI response was empty.")
    fenced = _FENCED_JSON.search(content)
    payload = fenced.group(1) if fenced else content
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise MalformedResponseError(
            "The AI response was not valid JSON."
        ) from exc
    if isinstance(data, dict):
        data = data.get("questions")
    if not isinstance(data, list):
        raise MalformedResponseError("The AI response was not a JSON array.")
    return data


def _first(record: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if key in record and record[key] is not None:
            return record[key]
    return None


def _normalize_options(raw: Any) -> List[str]:
    if not isinstance(raw, list):
        return []
    options: List[str] = []
    for item in raw:
        text = item.get("text", "") if isinstance(item, dict) else item
        text = str(text).strip()
        if text:
            options.append(text)
    return options


def _resolve_answer(raw: Any, options: Sequence[str]) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        candidate = raw.strip()
        if candidate.isdigit():
            return int(candidate)
        upper = candidate.upper()
        if upper in OPTION_KEYS:
            return OPTION_KEYS.index(upper)
        for index, option in enumerate(options):
            if option.upper() == upper:
                return index
    return None


def _build_question(record: Any, question_id: str) -> Optional[Question]:
    if not isinstance(record, dict):
        return None
    text = str(_first(record, _TEXT_KEYS) or "").strip()
    if not text:
        return None
    options = _normalize_options(_first(record, _OPTION_KEYS))
    if len(options) < OPTION_COUNT:
        return None
    options = options[:OPTION_COUNT]
    answer = _resolve_answer(_first(record, _ANSWER_KEYS), options)
    if answer is None or not 0 <= answer < OPTION_COUNT:
        return None
    return Question(
        id=question_id,
        prompt_text=text,
        options=(options[0], options[1], options[2], options[3]),
        correct_option_index=answer,
        short_explanation=str(_first(record, _EXPLANATION_KEYS) or "").strip(),
        estimated_audience=str(_first(record, _AUDIENCE_KEYS) or "").strip(),
    )


def _with_id(question: Question, question_id: str) -> Question:
    return Question(
        id=question_id,
        prompt_text=question.prompt_text,
        options=question.options,
        correct_option_index=question.correct_option_index,
        short_explanation=question.short_explanation,
        estimated_audience=question.estimated_audience,
    )


def _image_part(image: ImageAttachment) -> Dict[str, Any]:
    encoded = base64.b64encode(image.data).decode("ascii")
    return {
        "type": "image_url",
        "image_url": {"url": f"data:{image.mime_type};base64,{encoded}"},
    }
