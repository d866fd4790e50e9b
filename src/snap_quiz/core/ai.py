"""Shared AI helper utilities."""

from __future__ import annotations

import os
from typing import Any

from dotenv import load_dotenv
from openai import OpenAI

__all__ = ["API_KEY_ENV", "load_client"]

API_KEY_ENV = "OPENAI_API_KEY"


def load_client(
    *,
    api_base: str | None = None,
    timeout: float | None = None,
) -> Any:
    """Initialize an OpenAI client using environment-derived credentials.

    The SDK's own retries are disabled; one call is one HTTP request.
    """
    load_dotenv()
    api_key = os.getenv(API_KEY_ENV)
    if not api_key:
        raise RuntimeError(
            f"{API_KEY_ENV} not found in environment. Set it or add to .env"
        )
    kwargs: dict[str, Any] = {"api_key": api_key, "max_retries": 0}
    if api_base:
        kwargs["base_url"] = api_base
    if timeout is not None:
        kwargs["timeout"] = timeout
    return OpenAI(**kwargs)
