"""Rich console driver for a :class:`QuizSession`.

The loop renders the current stage, reads one command per prompt and feeds
it to the session. Input is read synchronously and blocks the event loop,
so the health line is refreshed once per prompt rather than while the player
is typing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Literal

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from ..gateway.health import HealthState, HealthStatus
from .models import OPTION_KEYS, Stage
from .session import QuizSession

InputProvider = Callable[[], str]
ExitAction = Literal["finished", "quit", "interrupted"]
CommandType = Literal["select", "next", "explain", "replay", "start", "quit"]

_STATUS_STYLES = {
    HealthState.OK: "green",
    HealthState.WARNING: "yellow",
    HealthState.ERROR: "red",
}


@dataclass(frozen=True)
class SessionCommand:
    """Normalized user command parsed from console input."""

    type: CommandType
    choice: int | None = None


def parse_session_command(raw: str | None) -> SessionCommand | None:
    """Parse raw user input into a structured command."""

    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in {"n", "next"}:
        return SessionCommand("next")
    if lowered in {"e", "explain", "why"}:
        return SessionCommand("explain")
    if lowered in {"r", "replay", "again"}:
        return SessionCommand("replay")
    if lowered in {"s", "start", "retry"}:
        return SessionCommand("start")
    if lowered in {"q", "quit", "exit"}:
        return SessionCommand("quit")
    key = text.upper()
    if key in OPTION_KEYS:
        return SessionCommand("select", OPTION_KEYS.index(key))
    if text.isdigit() and 1 <= int(text) <= len(OPTION_KEYS):
        return SessionCommand("select", int(text) - 1)
    return None


def format_status(status: HealthStatus) -> Text:
    label = status.label
    if status.remaining_seconds:
        label = f"{label} ({status.remaining_seconds}s)"
    return Text(f"● {label}", style=_STATUS_STYLES[status.state])


async def run_console_session(
    session: QuizSession,
    console: Console,
    input_provider: InputProvider,
    *,
    autostart: bool = True,
) -> ExitAction:
    """Play ``session`` on ``console`` until the player leaves."""

    def progress(message: str) -> None:
        console.print(Text(message, style="dim italic"))

    if autostart and session.stage is Stage.TITLE and session.images:
        await session.start(progress)

    while True:
        _render(console, session)
        try:
            raw = input_provider()
        except (EOFError, KeyboardInterrupt):
            console.print("\n[bold yellow]Session interrupted.[/]")
            session.abort()
            return "interrupted"
        command = parse_session_command(raw)
        if command is None:
            console.print("[red]Unrecognized command. Try again.[/]")
            continue
        if command.type == "quit":
            finished = session.stage is Stage.SUMMARY
            session.abort()
            if finished:
                return "finished"
            console.print("\n[bold yellow]Quiz ended early.[/]")
            return "quit"
        await _apply_command(command, session, console, progress)


async def _apply_command(
    command: SessionCommand,
    session: QuizSession,
    console: Console,
    progress: Callable[[str], None],
) -> None:
    stage = session.stage
    if stage is Stage.TITLE and command.type == "start":
        if not session.images:
            console.print("[red]No images selected.[/]")
            return
        await session.start(progress)
        return
    if stage is Stage.PLAYING and command.type == "select":
        assert command.choice is not None
        if session.record_answer(command.choice):
            console.print(f"Selected [bold]{OPTION_KEYS[command.choice]}[/].")
            await session.wait_for_feedback()
        return
    if stage is Stage.FEEDBACK and command.type == "explain":
        text = await session.request_explanation()
        console.print(Panel(text, title="Why?", border_style="blue"))
        return
    if stage is Stage.FEEDBACK and command.type == "next":
        await session.advance()
        return
    if stage is Stage.SUMMARY and command.type == "replay":
        await session.replay(progress)
        return
    console.print(
        f"[red]'{command.type}' is not available on the {stage.value} screen.[/]"
    )


def _render(console: Console, session: QuizSession) -> None:
    console.print()
    console.print(format_status(session.health_status()))
    stage = session.stage
    if stage is Stage.TITLE:
        _render_title(console, session)
    elif stage is Stage.PLAYING:
        _render_question(console, session)
    elif stage is Stage.FEEDBACK:
        _render_feedback(console, session)
    elif stage is Stage.SUMMARY:
        _render_summary(console, session)


def _render_title(console: Console, session: QuizSession) -> None:
    console.rule(Text("Snap Quiz", style="bold magenta"))
    if session.status_message:
        console.print(
            Panel(session.status_message, title="Oops", border_style="red")
        )
    console.print(
        Text(
            f"Mode: {session.mode.value} | Teacher: {session.persona.value} | "
            f"Images: {len(session.images)}",
            style="dim",
        )
    )
    console.print(Text("Commands: s (start), q (quit)", style="dim"))


def _render_question(console: Console, session: QuizSession) -> None:
    question = session.current_question
    assert question is not None
    header = Text.assemble(
        (f"Question {session.current_question_index + 1}", "bold cyan"),
        (f" / {len(session.questions)}", "dim"),
    )
    console.rule(header)
    console.print(Text(question.prompt_text, style="bold"))

    table = Table(show_header=False, box=box.SIMPLE, expand=True)
    table.add_column("Key", justify="center", style="cyan")
    table.add_column("Choice")
    for key, option in zip(OPTION_KEYS, question.options):
        table.add_row(key, option)
    console.print(table)
    console.print(Text("Commands: A-D (answer), q (quit)", style="dim"))


def _render_feedback(console: Console, session: QuizSession) -> None:
    question = session.current_question
    result = session.current_result
    assert question is not None and result is not None
    answer = f"{OPTION_KEYS[question.correct_option_index]}) {question.correct_option}"
    if result.is_correct:
        title, border = "Correct!", "green"
    else:
        title, border = "Not quite", "red"
    body = Text()
    body.append(f"Answer: {answer}\n", style="bold")
    if question.short_explanation:
        body.append(question.short_explanation)
    body.append(f"\nTime: {result.elapsed_seconds:.1f}s", style="dim")
    console.print(Panel(body, title=title, border_style=border))
    last = session.current_question_index + 1 >= len(session.questions)
    next_hint = "n (see results)" if last else "n (next)"
    console.print(
        Text(f"Commands: e (explain), {next_hint}, q (quit)", style="dim")
    )


def _render_summary(console: Console, session: QuizSession) -> None:
    console.rule(Text("Quiz Summary", style="bold magenta"))

    overview = Table(show_header=False, box=box.MINIMAL_DOUBLE_HEAD, expand=False)
    overview.add_column("Metric", style="bold")
    overview.add_column("Value", justify="right")
    overview.add_row("Questions", str(len(session.questions)))
    overview.add_row("Correct", str(session.correct_count))
    overview.add_row("Score", f"{session.score}%")
    console.print(overview)

    responses = Table(title="Responses", box=box.SIMPLE, expand=True)
    responses.add_column("#", justify="right")
    responses.add_column("Question", overflow="fold")
    responses.add_column("Time", justify="right")
    responses.add_column("Result", justify="center")
    for result in session.results:
        question = session.questions[result.question_index]
        responses.add_row(
            str(result.question_index + 1),
            question.prompt_text,
            f"{result.elapsed_seconds:.1f}s",
            "✅" if result.is_correct else "❌",
        )
    console.print(responses)

    if session.advice_text:
        console.print(
            Panel(session.advice_text, title="Teacher says", border_style="cyan")
        )
    console.print(Text("Commands: r (replay), q (quit)", style="dim"))
