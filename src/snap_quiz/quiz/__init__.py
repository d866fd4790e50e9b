from .images import ImageInputError, load_images
from .models import (
    OPTION_KEYS,
    TOTAL_QUESTIONS,
    AnswerResult,
    ImageAttachment,
    Mode,
    Persona,
    Question,
    Stage,
    score_percent,
)
from .protocol import QuizGenerator, parse_question_batch
from .session import QuizSession, SessionStateError
from .view import parse_session_command, run_console_session

__all__ = [
    "ImageInputError",
    "load_images",
    "OPTION_KEYS",
    "TOTAL_QUESTIONS",
    "AnswerResult",
    "ImageAttachment",
    "Mode",
    "Persona",
    "Question",
    "Stage",
    "score_percent",
    "QuizGenerator",
    "parse_question_batch",
    "QuizSession",
    "SessionStateError",
    "parse_session_command",
    "run_console_session",
]
