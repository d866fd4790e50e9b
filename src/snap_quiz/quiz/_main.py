"""Command entry points for playing quizzes and inspecting service status."""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

from rich.console import Console

from .. import config as config_mod
from ..core.logging import configure_logger, release_logger
from ..core.workspace import WorkspaceError, WorkspaceLayout, ensure_workspace
from ..gateway.health import HealthMonitor, RequestRecord, load_record, save_record
from ..gateway.orchestrator import RequestOrchestrator
from .client import CompletionClient, OpenAICompletionClient
from .images import ImageInputError, load_images
from .models import TOTAL_QUESTIONS, Mode, Persona
from .protocol import QuizGenerator
from .session import QuizSession
from .view import ExitAction, format_status, run_console_session

LOGGER_NAME = "snap_quiz"
RECORD_FILENAME = "request_record.json"


def _print_error(message: str) -> None:
    sys.stderr.write(f"Error: {message}\n")


def _to_path(value: str | None) -> Path | None:
    if value is None:
        return None
    return Path(value).expanduser().resolve()


def _record_path(layout: WorkspaceLayout) -> Path:
    return layout.path_for("state") / RECORD_FILENAME


def _load_context(
    config_path: str | None,
) -> tuple[config_mod.SnapQuizConfig, WorkspaceLayout]:
    cfg = config_mod.load_config(explicit_path=_to_path(config_path))
    layout = ensure_workspace()
    return cfg, layout


# ----------------------------------------------------------------------
# play


def _build_play_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapquiz play",
        description="Generate a multiple-choice quiz from photos of study "
        "material and play it in the terminal.",
    )
    parser.add_argument("images", nargs="+", help="Image files to quiz on.")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in Mode],
        help="study sticks to the material, quiz goes for trivia.",
    )
    parser.add_argument(
        "--persona",
        choices=[persona.value for persona in Persona],
        help="Teacher style for questions and advice.",
    )
    parser.add_argument("--config", help="Path to the config TOML.")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Mirror log output to stderr.",
    )
    return parser


def build_session(
    cfg: config_mod.SnapQuizConfig,
    client: CompletionClient,
    record: RequestRecord,
) -> tuple[QuizSession, RequestOrchestrator]:
    """Wire the orchestrator, generator and session from configuration."""

    orchestrator = RequestOrchestrator(
        record=record,
        min_interval=cfg.throttle.min_interval_seconds,
        max_retries=cfg.throttle.max_retries,
        initial_backoff=cfg.throttle.initial_backoff_seconds,
    )
    generator = QuizGenerator(
        orchestrator,
        client,
        batch_max_tokens=cfg.providers.openai.max_output_tokens,
    )
    health = HealthMonitor(
        record,
        cooldown_seconds=cfg.health.cooldown_seconds,
        warning_threshold=cfg.health.warning_threshold,
    )
    session = QuizSession(
        generator,
        health,
        feedback_delay=cfg.session.feedback_delay_seconds,
        max_images=cfg.session.max_images,
        mode=cfg.session.default_mode,
        persona=cfg.session.default_persona,
    )
    return session, orchestrator


async def _play(
    session: QuizSession,
    orchestrator: RequestOrchestrator,
    console: Console,
    input_provider: Callable[[], str],
) -> ExitAction:
    try:
        return await run_console_session(session, console, input_provider)
    finally:
        await orchestrator.aclose()


def play_main(
    argv: Sequence[str] | None = None,
    *,
    console: Optional[Console] = None,
    input_provider: Optional[Callable[[], str]] = None,
    client: Optional[CompletionClient] = None,
) -> int:
    args = _build_play_parser().parse_args(
        list(argv) if argv is not None else None
    )
    try:
        cfg, layout = _load_context(args.config)
    except (config_mod.ConfigError, WorkspaceError) as exc:
        _print_error(str(exc))
        return 2

    logger, log_path = configure_logger(
        LOGGER_NAME,
        log_dir=layout.path_for("logs"),
        level=cfg.logging.level,
        verbose=args.verbose or cfg.logging.verbose,
    )
    try:
        try:
            images = load_images(
                [Path(item) for item in args.images],
                max_images=cfg.session.max_images,
            )
        except ImageInputError as exc:
            _print_error(str(exc))
            return 2
        if client is None:
            provider = cfg.providers.openai
            try:
                client = OpenAICompletionClient(
                    model=provider.model,
                    temperature=provider.temperature,
                    request_timeout=provider.request_timeout_seconds,
                    api_base=provider.api_base,
                )
            except RuntimeError as exc:
                _print_error(str(exc))
                return 2

        record_path = _record_path(layout)
        record = load_record(
            record_path, window_seconds=cfg.health.window_seconds
        )
        session, orchestrator = build_session(cfg, client, record)
        if args.mode:
            session.select_mode(Mode.from_value(args.mode))
        if args.persona:
            session.select_persona(Persona.from_value(args.persona))
        session.set_images(images)

        out = console or Console()
        reader = input_provider or (lambda: out.input("> "))
        logger.info(
            "Starting quiz",
            extra={
                "images": len(images),
                "mode": session.mode.value,
                "persona": session.persona.value,
                "log_path": str(log_path),
            },
        )
        try:
            action = asyncio.run(_play(session, orchestrator, out, reader))
        finally:
            save_record(record, record_path)
        logger.info("Quiz closed", extra={"exit_action": action})
        return 0
    finally:
        release_logger(logger)


# ----------------------------------------------------------------------
# status


def _build_status_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapquiz status",
        description="Report the AI service status from recent requests.",
    )
    parser.add_argument("--config", help="Path to the config TOML.")
    return parser


def status_main(
    argv: Sequence[str] | None = None,
    *,
    console: Optional[Console] = None,
    clock: Callable[[], float] = time.time,
) -> int:
    args = _build_status_parser().parse_args(
        list(argv) if argv is not None else None
    )
    try:
        cfg, layout = _load_context(args.config)
    except (config_mod.ConfigError, WorkspaceError) as exc:
        _print_error(str(exc))
        return 2

    record = load_record(
        _record_path(layout), window_seconds=cfg.health.window_seconds
    )
    monitor = HealthMonitor(
        record,
        clock=clock,
        cooldown_seconds=cfg.health.cooldown_seconds,
        warning_threshold=cfg.health.warning_threshold,
    )
    out = console or Console()
    out.print(format_status(monitor.get_status()))
    out.print(
        f"Requests in the last {int(cfg.health.window_seconds)}s: "
        f"{record.recent_dispatches(clock())}"
    )
    return 0


# ----------------------------------------------------------------------
# config


def _build_config_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snapquiz config",
        description="Manage the snap-quiz configuration file.",
    )
    subparsers = parser.add_subparsers(dest="config_command", required=True)

    init_parser = subparsers.add_parser(
        "init", help="Write the default configuration template."
    )
    init_parser.add_argument(
        "--path", help="Destination for the config TOML (defaults to workspace)."
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing config file if present.",
    )

    validate_parser = subparsers.add_parser(
        "validate", help="Validate the active configuration."
    )
    validate_parser.add_argument("--path", help="Path to the config TOML.")
    validate_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress success output; errors still print to stderr.",
    )

    path_parser = subparsers.add_parser(
        "path", help="Print the resolved config path."
    )
    path_parser.add_argument("--path", help="Optional path override.")
    return parser


def _config_init(args: argparse.Namespace) -> int:
    target = config_mod.resolve_config_path(explicit_path=_to_path(args.path))
    config_mod.write_template(target, overwrite=args.force)
    print(f"Wrote config template to {target}")
    return 0


def _config_validate(args: argparse.Namespace) -> int:
    cfg = config_mod.load_config(explicit_path=_to_path(args.path))
    if not args.quiet:
        print("Configuration OK")
        print(f"  source: {cfg.source or '(built-in defaults)'}")
        print(f"  model: {cfg.providers.openai.model}")
        print(f"  min_interval_seconds: {cfg.throttle.min_interval_seconds}")
        print(f"  max_retries: {cfg.throttle.max_retries}")
        print(f"  questions per quiz: {TOTAL_QUESTIONS}")
    return 0


def _config_path(args: argparse.Namespace) -> int:
    print(config_mod.resolve_config_path(explicit_path=_to_path(args.path)))
    return 0


def config_main(argv: Sequence[str] | None = None) -> int:
    args = _build_config_parser().parse_args(
        list(argv) if argv is not None else None
    )
    handlers = {
        "init": _config_init,
        "validate": _config_validate,
        "path": _config_path,
    }
    try:
        return handlers[args.config_command](args)
    except (config_mod.ConfigError, WorkspaceError) as exc:
        _print_error(str(exc))
        return 2
