"""Integration helpers for the Gemini structured-generation API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..models import AutocompleteSuggestion, MediaDetails, MediaType, Suggestion
from ..results import Outcome
from ..utils import parse_json_payload, slugify, truncate

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

MEDIA_DETAILS_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "title": {
            "type": "STRING",
            "description": "The official title of the movie or book.",
        },
        "type": {
            "type": "STRING",
            "description": 'The type of media, either "movie" or "book".',
            "enum": ["movie", "book"],
        },
        "genres": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "A list of genres associated with the media.",
        },
        "description": {
            "type": "STRING",
            "description": "A brief, one-paragraph summary of the plot.",
        },
        "posterUrl": {
            "type": "STRING",
            "description": "A placeholder image URL from https://picsum.photos/300/450",
        },
    },
    "required": ["title", "type", "genres", "description", "posterUrl"],
}

SUGGESTIONS_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "description": {"type": "STRING"},
            "genres": {"type": "ARRAY", "items": {"type": "STRING"}},
            "posterUrl": {
                "type": "STRING",
                "description": "A placeholder image URL from https://picsum.photos/300/450",
            },
        },
        "required": ["title", "description", "genres", "posterUrl"],
    },
}

AUTOCOMPLETE_SCHEMA: dict[str, Any] = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {
                "type": "STRING",
                "description": "The title of the movie or book.",
            },
            "type": {
                "type": "STRING",
                "enum": ["movie", "book"],
                "description": "The type of media, either movie or book.",
            },
            "year": {
                "type": "NUMBER",
                "description": (
                    "The year of release or publication. Can be omitted if not "
                    "readily available."
                ),
            },
        },
        "required": ["title", "type"],
    },
}

DETAILS_PROMPT = (
    'Generate details for the movie or book titled "{query}". Infer whether it\'s '
    "a movie or a book. Use a relevant seed for the picsum URL "
    "(e.g., https://picsum.photos/seed/{seed}/300/450)."
)

SUGGESTIONS_PROMPT = (
    "Suggest {count} {media_type}s for someone who enjoys the following genres: "
    "{genres}. Do not suggest titles that are extremely popular or part of a major "
    "franchise. Provide unique and interesting recommendations."
)

SURPRISE_PROMPT = (
    "Suggest one random, interesting, and lesser-known movie or book. Provide its "
    "title, a brief description, genres, and a placeholder poster URL from "
    "https://picsum.photos/300/450. Infer if it's a movie or book. Use a relevant "
    "seed for the picsum URL."
)

AUTOCOMPLETE_PROMPT = (
    "Provide up to {limit} autocomplete suggestions for popular movie or book "
    'titles that start with "{query}". For each suggestion, include its type '
    "(movie or book) and year of release or publication if available."
)


class GeminiClient:
    """Client responsible for talking to the Gemini ``generateContent`` API.

    Every public coroutine returns an :class:`Outcome` and never raises: rate
    limits and transport errors are retried with exponential backoff, other
    HTTP errors, unparsable JSON and payloads that do not match the declared
    shape become ``failed`` outcomes.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings
        self._client = http_client
        self._sleep = sleep
        self._api_key = settings.gemini_api_key
        self._max_attempts = max(1, settings.generation_max_attempts)
        self._base_delay = settings.retry_base_delay
        if not self._api_key:
            logger.error(
                "GEMINI_API_KEY is not configured; AI lookups and suggestions are disabled"
            )

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def backoff_delay(self, retry: int) -> float:
        """Return the delay before the ``retry``-th retry (1-based)."""

        return self._base_delay * (2 ** (retry - 1))

    async def request_structured(
        self, prompt: str, response_schema: dict[str, Any]
    ) -> Outcome[Any]:
        """Send ``prompt`` constrained to ``response_schema`` and parse the JSON reply."""

        if not self._api_key:
            return Outcome.failed("missing-credential")
        if not prompt or not prompt.strip():
            return Outcome.failed("empty-prompt")

        url = f"/models/{self._settings.gemini_model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": response_schema,
            },
        }

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._client.post(
                    url, json=payload, params={"key": self._api_key}
                )
            except httpx.TransportError as exc:
                if attempt < self._max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.info(
                        "Transient error talking to Gemini (%s). Retrying in %.1fs",
                        exc.__class__.__name__,
                        delay,
                    )
                    await self._sleep(delay)
                    continue
                logger.warning(
                    "Gemini request failed after %s attempts: %s", attempt, exc
                )
                return Outcome.failed("network-error")
            except httpx.HTTPError as exc:
                logger.error("Gemini request failed: %s", exc)
                return Outcome.failed("http-error")

            if response.status_code == 429:
                if attempt < self._max_attempts:
                    delay = self.backoff_delay(attempt)
                    logger.info("Gemini rate limit hit. Retrying in %.1fs", delay)
                    await self._sleep(delay)
                    continue
                logger.warning(
                    "Gemini still rate limited after %s attempts", attempt
                )
                return Outcome.failed("rate-limited")

            if response.status_code >= 400:
                logger.error(
                    "Gemini request failed with status %s: %s",
                    response.status_code,
                    truncate(response.text),
                )
                return Outcome.failed(f"http-{response.status_code}")
            break

        text = self._extract_text(response)
        if text is None:
            logger.info("No text content found in Gemini response")
            return Outcome.empty()

        try:
            return Outcome.ok(parse_json_payload(text))
        except ValueError as exc:
            logger.error(
                "Error parsing Gemini JSON response: %s. Raw text: %s",
                exc,
                truncate(text),
            )
            return Outcome.failed("invalid-json")

    @staticmethod
    def _extract_text(response: httpx.Response) -> str | None:
        try:
            data = response.json()
        except ValueError:
            logger.warning("Unexpected non-JSON Gemini response envelope")
            return None
        if not isinstance(data, dict):
            return None
        candidates = data.get("candidates") or []
        if not isinstance(candidates, list) or not candidates:
            return None
        first = candidates[0]
        if not isinstance(first, dict):
            return None
        content = first.get("content") or {}
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            return None
        text = parts[0].get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        return text

    async def fetch_media_details(self, query: str) -> Outcome[MediaDetails]:
        """Look up a single title by free-text query."""

        query = (query or "").strip()
        if not query:
            return Outcome.empty()
        prompt = DETAILS_PROMPT.format(query=query, seed=slugify(query))
        result = await self.request_structured(prompt, MEDIA_DETAILS_SCHEMA)
        return self._validate_details(result, label="Media details")

    async def fetch_suggestions(
        self, genres: Sequence[str], media_type: MediaType
    ) -> Outcome[list[Suggestion]]:
        """Recommend titles of ``media_type`` for someone who enjoys ``genres``."""

        cleaned = [genre.strip() for genre in genres if genre and genre.strip()]
        if not cleaned:
            return Outcome.empty()
        prompt = SUGGESTIONS_PROMPT.format(
            count=self._settings.suggestion_count,
            media_type=media_type.value,
            genres=", ".join(cleaned),
        )
        result = await self.request_structured(prompt, SUGGESTIONS_SCHEMA)
        if not result.is_ok:
            return result  # type: ignore[return-value]
        suggestions = self._validate_entries(
            result.value,
            Suggestion,
            overrides={"type": media_type.value},
            label="suggestion",
        )
        if not suggestions:
            return Outcome.empty()
        return Outcome.ok(suggestions[: self._settings.suggestion_count])

    async def fetch_surprise_suggestion(self) -> Outcome[Suggestion]:
        """Return one lesser-known movie or book."""

        result = await self.request_structured(SURPRISE_PROMPT, MEDIA_DETAILS_SCHEMA)
        details = self._validate_details(result, label="Surprise suggestion")
        return details.map(Suggestion.from_details)

    @staticmethod
    def _validate_details(result: Outcome[Any], *, label: str) -> Outcome[MediaDetails]:
        if not result.is_ok:
            return result  # type: ignore[return-value]
        if not isinstance(result.value, dict):
            logger.warning(
                "%s response is not an object: %s", label, truncate(repr(result.value))
            )
            return Outcome.failed("invalid-shape")
        try:
            return Outcome.ok(MediaDetails.model_validate(result.value))
        except ValidationError as exc:
            logger.warning(
                "%s response failed validation: %s. Payload: %s",
                label,
                exc.errors(include_url=False),
                truncate(repr(result.value)),
            )
            return Outcome.failed("invalid-shape")

    async def fetch_autocomplete_suggestions(
        self, query: str
    ) -> Outcome[list[AutocompleteSuggestion]]:
        """Complete a partially typed title."""

        query = (query or "").strip()
        if len(query) < self._settings.autocomplete_min_chars:
            return Outcome.empty()
        prompt = AUTOCOMPLETE_PROMPT.format(
            limit=self._settings.autocomplete_limit, query=query
        )
        result = await self.request_structured(prompt, AUTOCOMPLETE_SCHEMA)
        if not result.is_ok:
            return result  # type: ignore[return-value]
        entries = self._validate_entries(
            result.value, AutocompleteSuggestion, label="autocomplete"
        )
        if not entries:
            return Outcome.empty()
        return Outcome.ok(entries[: self._settings.autocomplete_limit])

    @staticmethod
    def _validate_entries(
        payload: Any,
        model: type[Any],
        *,
        overrides: dict[str, Any] | None = None,
        label: str,
    ) -> list[Any]:
        """Validate list payload entries individually, dropping malformed ones."""

        if isinstance(payload, dict):
            candidate = payload.get("items")
            payload = candidate if isinstance(candidate, list) else [payload]
        if not isinstance(payload, list):
            logger.warning(
                "Expected a list of %s entries, got %s", label, type(payload).__name__
            )
            return []

        valid: list[Any] = []
        for entry in payload:
            if not isinstance(entry, dict):
                logger.warning("Dropping non-object %s entry: %r", label, entry)
                continue
            data = {**entry, **(overrides or {})}
            try:
                valid.append(model.model_validate(data))
            except ValidationError as exc:
                logger.warning(
                    "Dropping invalid %s entry: %s. Payload: %s",
                    label,
                    exc.errors(include_url=False),
                    truncate(repr(entry)),
                )
        return valid
