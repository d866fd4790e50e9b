"""Configuration for snap-quiz.

Settings live in a TOML file grouped by concern. Lookup order is an explicit
``--config`` path, then ``SNAP_QUIZ_CONFIG``, then
``<workspace>/config/snap_quiz.toml``; when none exists the built-in
defaults apply.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .core.config import (
    TomlConfigError,
    overlay_known_keys,
    read_toml_table,
    write_toml_template,
)
from .core.workspace import ensure_workspace
from .quiz.models import Mode, Persona

CONFIG_PATH_ENV = "SNAP_QUIZ_CONFIG"
CONFIG_FILENAME = "snap_quiz.toml"


class ConfigError(RuntimeError):
    """Raised when configuration parsing or validation fails."""


@dataclass(frozen=True)
class OpenAIConfig:
    model: str
    temperature: float
    max_output_tokens: int
    request_timeout_seconds: int
    api_base: Optional[str]


@dataclass(frozen=True)
class ProvidersConfig:
    openai: OpenAIConfig


@dataclass(frozen=True)
class ThrottleConfig:
    min_interval_seconds: float
    max_retries: int
    initial_backoff_seconds: float


@dataclass(frozen=True)
class HealthConfig:
    cooldown_seconds: float
    window_seconds: float
    warning_threshold: int


@dataclass(frozen=True)
class SessionConfig:
    feedback_delay_seconds: float
    max_images: int
    default_mode: Mode
    default_persona: Persona


@dataclass(frozen=True)
class LoggingConfig:
    level: str
    verbose: bool


@dataclass(frozen=True)
class SnapQuizConfig:
    providers: ProvidersConfig
    throttle: ThrottleConfig
    health: HealthConfig
    session: SessionConfig
    logging: LoggingConfig
    source: Optional[Path] = None


def _require_positive_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"'{field}' must be a positive integer.")
    return value


def _require_non_negative_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"'{field}' must be a non-negative integer.")
    return value


def _require_bool(value: Any, *, field: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{field}' must be a boolean.")
    return value


def _require_float_range(
    value: Any, *, field: str, min_value: float, max_value: float
) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{field}' must be a number.")
    number = float(value)
    if not (min_value <= number <= max_value):
        raise ConfigError(
            f"'{field}' must be between {min_value} and {max_value}."
        )
    return number


def _require_string(value: Any, *, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{field}' must be a non-empty string.")
    return value.strip()


def _coerce_optional_string(value: Any, *, field: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{field}' must be a non-empty string when set.")
    return value.strip()


def _require_table(tree: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = tree.get(key, {})
    if not isinstance(section, Mapping):
        raise ConfigError(f"{key} table must be a mapping.")
    return section


def _build_openai(section: Mapping[str, Any]) -> OpenAIConfig:
    return OpenAIConfig(
        model=_require_string(
            section.get("model"), field="providers.openai.model"
        ),
        temperature=_require_float_range(
            section.get("temperature"),
            field="providers.openai.temperature",
            min_value=0.0,
            max_value=2.0,
        ),
        max_output_tokens=_require_positive_int(
            section.get("max_output_tokens"),
            field="providers.openai.max_output_tokens",
        ),
        request_timeout_seconds=_require_positive_int(
            section.get("request_timeout_seconds"),
            field="providers.openai.request_timeout_seconds",
        ),
        api_base=_coerce_optional_string(
            section.get("api_base"), field="providers.openai.api_base"
        ),
    )


def _build_providers(section: Mapping[str, Any]) -> ProvidersConfig:
    openai_section = section.get("openai")
    if not isinstance(openai_section, Mapping):
        raise ConfigError("providers.openai table is required.")
    return ProvidersConfig(openai=_build_openai(openai_section))


def _build_throttle(section: Mapping[str, Any]) -> ThrottleConfig:
    return ThrottleConfig(
        min_interval_seconds=_require_float_range(
            section.get("min_interval_seconds"),
            field="throttle.min_interval_seconds",
            min_value=0.0,
            max_value=600.0,
        ),
        max_retries=_require_non_negative_int(
            section.get("max_retries"), field="throttle.max_retries"
        ),
        initial_backoff_seconds=_require_float_range(
            section.get("initial_backoff_seconds"),
            field="throttle.initial_backoff_seconds",
            min_value=0.0,
            max_value=600.0,
        ),
    )


def _build_health(section: Mapping[str, Any]) -> HealthConfig:
    return HealthConfig(
        cooldown_seconds=_require_float_range(
            section.get("cooldown_seconds"),
            field="health.cooldown_seconds",
            min_value=1.0,
            max_value=3600.0,
        ),
        window_seconds=_require_float_range(
            section.get("window_seconds"),
            field="health.window_seconds",
            min_value=1.0,
            max_value=3600.0,
        ),
        warning_threshold=_require_positive_int(
            section.get("warning_threshold"), field="health.warning_threshold"
        ),
    )


def _build_session(section: Mapping[str, Any]) -> SessionConfig:
    mode_raw = _require_string(
        section.get("default_mode"), field="session.default_mode"
    )
    persona_raw = _require_string(
        section.get("default_persona"), field="session.default_persona"
    )
    try:
        default_mode = Mode.from_value(mode_raw)
        default_persona = Persona.from_value(persona_raw)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return SessionConfig(
        feedback_delay_seconds=_require_float_range(
            section.get("feedback_delay_seconds"),
            field="session.feedback_delay_seconds",
            min_value=0.0,
            max_value=5.0,
        ),
        max_images=_require_positive_int(
            section.get("max_images"), field="session.max_images"
        ),
        default_mode=default_mode,
        default_persona=default_persona,
    )


def _build_logging(section: Mapping[str, Any]) -> LoggingConfig:
    level = _require_string(section.get("level"), field="logging.level").upper()
    allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if level not in allowed:
        raise ConfigError(
            "logging.level must be one of "
            "DEBUG, INFO, WARNING, ERROR, CRITICAL."
        )
    verbose = _require_bool(section.get("verbose"), field="logging.verbose")
    return LoggingConfig(level=level, verbose=verbose)


def _build_config(
    tree: Mapping[str, Any], *, source: Optional[Path]
) -> SnapQuizConfig:
    return SnapQuizConfig(
        providers=_build_providers(_require_table(tree, "providers")),
        throttle=_build_throttle(_require_table(tree, "throttle")),
        health=_build_health(_require_table(tree, "health")),
        session=_build_session(_require_table(tree, "session")),
        logging=_build_logging(_require_table(tree, "logging")),
        source=source,
    )


def resolve_config_path(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
) -> Path:
    env_map = os.environ if env is None else env
    if explicit_path is not None:
        return explicit_path.expanduser().resolve()
    env_override = (env_map.get(CONFIG_PATH_ENV) or "").strip()
    if env_override:
        return Path(env_override).expanduser().resolve()
    layout = ensure_workspace(env=env_map)
    return layout.path_for("config") / CONFIG_FILENAME


def load_config(
    *,
    explicit_path: Optional[Path] = None,
    env: Mapping[str, str] | None = None,
) -> SnapQuizConfig:
    """Load and validate configuration, falling back to defaults.

    An explicit or environment path must exist; the workspace default may be
    absent.
    """

    env_map = os.environ if env is None else env
    required = explicit_path is not None or bool(
        (env_map.get(CONFIG_PATH_ENV) or "").strip()
    )
    path = resolve_config_path(explicit_path=explicit_path, env=env_map)
    if not required and not path.exists():
        return _build_config(default_tree(), source=None)
    try:
        tree = overlay_known_keys(_DEFAULTS, read_toml_table(path))
    except TomlConfigError as exc:
        raise ConfigError(str(exc)) from exc
    return _build_config(tree, source=path)


def default_tree() -> Dict[str, Any]:
    """Return a copy of the default configuration tree."""

    return copy.deepcopy(_DEFAULTS)


def config_template() -> str:
    """Return the TOML template recommended for new installs."""

    return _CONFIG_TEMPLATE.strip() + "\n"


def write_template(
    path: Path, *, overwrite: bool = False, mode: int = 0o600
) -> Path:
    try:
        return write_toml_template(
            path, template=config_template(), overwrite=overwrite, mode=mode
        )
    except TomlConfigError as exc:
        raise ConfigError(str(exc)) from exc


_DEFAULTS: Dict[str, Any] = {
    "providers": {
        "openai": {
            "model": "gpt-4o-mini",
            "temperature": 0.7,
            "max_output_tokens": 3000,
            "request_timeout_seconds": 60,
            "api_base": None,
        },
    },
    "throttle": {
        "min_interval_seconds": 4.0,
        "max_retries": 3,
        "initial_backoff_seconds": 2.0,
    },
    "health": {
        "cooldown_seconds": 60.0,
        "window_seconds": 60.0,
        "warning_threshold": 10,
    },
    "session": {
        "feedback_delay_seconds": 0.4,
        "max_images": 10,
        "default_mode": "study",
        "default_persona": "gentle",
    },
    "logging": {
        "level": "INFO",
        "verbose": False,
    },
}


_CONFIG_TEMPLATE = """
# snap-quiz configuration

[providers.openai]
# Vision-capable chat completion model
model = "gpt-4o-mini"
# Sampling temperature (0.0-2.0)
temperature = 0.7
# Token cap for a question batch; explanations and advice use less
max_output_tokens = 3000
request_timeout_seconds = 60
# Optional API base override
# api_base = "https://api.openai.com/v1"

[throttle]
# Minimum seconds between two requests, retries included
min_interval_seconds = 4.0
# Retries for transient failures; the backoff doubles after each one
max_retries = 3
initial_backoff_seconds = 2.0

[health]
# Seconds the status stays on "Taking a break" after a rate limit
cooldown_seconds = 60
# Warn when this many requests were sent within window_seconds
window_seconds = 60
warning_threshold = 10

[session]
# Pause after picking an answer before feedback shows
feedback_delay_seconds = 0.4
max_images = 10
# "study" sticks to the material, "quiz" goes for trivia
default_mode = "study"
# "gentle" or "tricky"
default_persona = "gentle"

[logging]
level = "INFO"
verbose = false
"""
