"""Utility helpers for the Biblio-theatron service."""

from __future__ import annotations

import json
import re
import unicodedata
from typing import Any


JSON_BLOCK_RE = re.compile(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", re.DOTALL)


def slugify(value: str) -> str:
    """Return a URL-friendly slug."""

    value = unicodedata.normalize("NFKD", value)
    value = value.encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value)
    value = value.strip("-")
    value = re.sub(r"-+", "-", value)
    return value.lower() or "untitled"


def parse_json_payload(content: str) -> Any:
    """Parse the JSON document produced by the model.

    Structured-output responses are plain JSON, but a fenced markdown block
    is tolerated as well.
    """

    text = content.strip()
    match = JSON_BLOCK_RE.search(text)
    if match:
        text = match.group(1)
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError("Invalid JSON payload produced by the model") from exc


def poster_placeholder(title: str) -> str:
    """Return a deterministic placeholder poster for ``title``."""

    return f"https://picsum.photos/seed/{slugify(title)}/300/450"


def truncate(value: str, limit: int = 500) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + "…"
