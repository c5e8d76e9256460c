"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_default_retry_policy() -> None:
    """Three attempts starting from a one second backoff."""

    settings = Settings(_env_file=None, GEMINI_API_KEY="key")

    assert settings.generation_max_attempts == 3
    assert settings.retry_base_delay == 1.0
    assert settings.autocomplete_debounce_seconds == pytest.approx(0.3)
    assert settings.default_user_id == "user1"


def test_blank_api_key_is_treated_as_missing() -> None:
    settings = Settings(_env_file=None, GEMINI_API_KEY="   ")

    assert settings.gemini_api_key is None


def test_api_key_is_stripped() -> None:
    settings = Settings(_env_file=None, GEMINI_API_KEY=" abc ")

    assert settings.gemini_api_key == "abc"


def test_attempt_bound_must_be_positive() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, GENERATION_MAX_ATTEMPTS=0)
