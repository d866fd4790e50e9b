"""User-facing copy: progress text, error messages and canned fallbacks."""

from __future__ import annotations

import random
from typing import Optional

from ..gateway.errors import FailureCategory
from .models import Persona

PROGRESS_PREPARING = "Getting your pictures ready..."
PROGRESS_THINKING = "The AI is writing questions from your pictures..."
PROGRESS_CHECKING = "Checking the questions..."
PROGRESS_REPLAY = "Making a fresh set of questions..."

EXPLANATION_FALLBACK = (
    "The detailed explanation is not available right now. Re-read the short "
    "explanation and try this one again later!"
)

_ADVICE_FALLBACKS: dict[Persona, tuple[str, ...]] = {
    Persona.GENTLE: (
        "Great effort! Every question you try makes you a little stronger.",
        "Nice work today. Review the ones you missed and you will nail them.",
        "Your possibilities are endless. Keep going!",
    ),
    Persona.TRICKY: (
        "Not bad. Now try to explain each answer in your own words.",
        "You survived my questions. Come back and beat your score!",
        "Good. The tricky ones are where the real learning happens.",
    ),
}


def advice_fallback(
    persona: Persona, rng: Optional[random.Random] = None
) -> str:
    """Pick a canned advice line for ``persona``."""

    pool = _ADVICE_FALLBACKS[persona]
    chooser = rng or random
    return chooser.choice(pool)


def failure_message(
    category: FailureCategory, *, cooldown_seconds: int = 0
) -> str:
    """Copy shown on the title screen after question generation fails."""

    if category is FailureCategory.RATE_LIMITED:
        wait = (
            f" Please wait about {cooldown_seconds} seconds."
            if cooldown_seconds > 0
            else ""
        )
        return "The AI needs a short break." + wait
    if category is FailureCategory.SAFETY_BLOCKED:
        return (
            "These pictures could not be used. Please try different images."
        )
    return "Could not create the quiz. Please try again."
