"""Pydantic models describing watchlist records and AI payloads."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

StatusPhase = Literal["pending", "in-progress", "completed"]


class MediaType(str, Enum):
    MOVIE = "movie"
    BOOK = "book"


class MediaStatus(str, Enum):
    TO_WATCH = "to-watch"
    WATCHING = "watching"
    WATCHED = "watched"
    TO_READ = "to-read"
    READING = "reading"
    READ = "read"


# Ordered pending -> in-progress -> completed for each kind.
STATUS_CYCLES: dict[MediaType, tuple[MediaStatus, MediaStatus, MediaStatus]] = {
    MediaType.MOVIE: (MediaStatus.TO_WATCH, MediaStatus.WATCHING, MediaStatus.WATCHED),
    MediaType.BOOK: (MediaStatus.TO_READ, MediaStatus.READING, MediaStatus.READ),
}

_PHASES: tuple[StatusPhase, StatusPhase, StatusPhase] = (
    "pending",
    "in-progress",
    "completed",
)

PLACEHOLDER_POSTER_URL = "https://placehold.co/300x450/eee/aaa?text=No+Image"


def is_valid_status(media_type: MediaType, status: MediaStatus) -> bool:
    return status in STATUS_CYCLES[media_type]


def pending_status(media_type: MediaType) -> MediaStatus:
    return STATUS_CYCLES[media_type][0]


def status_phase(status: MediaStatus) -> StatusPhase:
    """Return the kind-independent phase a status belongs to."""

    for cycle in STATUS_CYCLES.values():
        if status in cycle:
            return _PHASES[cycle.index(status)]
    raise ValueError(f"Unknown status {status!r}")


def statuses_for_phase(phase: StatusPhase) -> tuple[MediaStatus, ...]:
    index = _PHASES.index(phase)
    return tuple(cycle[index] for cycle in STATUS_CYCLES.values())


def next_status(media_type: MediaType, status: MediaStatus) -> MediaStatus:
    """Advance ``status`` one step along the kind's cycle, wrapping around."""

    cycle = STATUS_CYCLES[media_type]
    if status not in cycle:
        raise ValueError(
            f"Status {status.value!r} is not valid for a {media_type.value}"
        )
    return cycle[(cycle.index(status) + 1) % len(cycle)]


def _clean_genres(value: object) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError("genres must be a list of strings")
    cleaned: list[str] = []
    for entry in value:
        if not isinstance(entry, str):
            raise ValueError("genres must be a list of strings")
        genre = entry.strip()
        if genre and genre not in cleaned:
            cleaned.append(genre)
    return cleaned


class MediaItem(BaseModel):
    """A persisted watchlist entry."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str
    type: MediaType
    title: str
    genres: list[str] = Field(default_factory=list)
    status: MediaStatus
    rating: int | None = Field(default=None, ge=1, le=5)
    api_id: str
    poster_url: str = Field(alias="posterUrl")
    description: str = ""
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @property
    def phase(self) -> StatusPhase:
        return status_phase(self.status)

    @property
    def is_completed(self) -> bool:
        return self.phase == "completed"


class MediaItemCreate(BaseModel):
    """Payload accepted when a user adds an item manually."""

    model_config = ConfigDict(populate_by_name=True)

    type: MediaType
    title: str = Field(min_length=1, max_length=300)
    genres: list[str] = Field(default_factory=list)
    status: MediaStatus | None = None
    rating: int | None = Field(default=None, ge=1, le=5)
    api_id: str | None = None
    poster_url: str | None = Field(default=None, alias="posterUrl")
    description: str | None = None

    @field_validator("title", mode="before")
    @classmethod
    def _strip_title(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("genres", mode="before")
    @classmethod
    def _normalise_genres(cls, value: object) -> list[str]:
        return _clean_genres(value)

    @model_validator(mode="after")
    def _check_status_and_rating(self) -> "MediaItemCreate":
        if self.status is None:
            self.status = pending_status(self.type)
        elif not is_valid_status(self.type, self.status):
            raise ValueError(
                f"Status {self.status.value!r} is not valid for a {self.type.value}"
            )
        if self.rating is not None and status_phase(self.status) != "completed":
            raise ValueError("Only completed items can be rated")
        return self


class StatusUpdate(BaseModel):
    status: MediaStatus


class RatingUpdate(BaseModel):
    rating: int | None = Field(default=None, ge=1, le=5)


class MediaDetails(BaseModel):
    """Single-title lookup produced by the generative API."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=300)
    type: MediaType
    genres: list[str]
    description: str
    poster_url: str = Field(alias="posterUrl")

    @field_validator("genres", mode="before")
    @classmethod
    def _normalise_genres(cls, value: object) -> list[str]:
        return _clean_genres(value)


class Suggestion(BaseModel):
    """Recommendation that can be turned into a watchlist item."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=300)
    description: str
    genres: list[str]
    poster_url: str = Field(alias="posterUrl")
    type: MediaType

    @field_validator("genres", mode="before")
    @classmethod
    def _normalise_genres(cls, value: object) -> list[str]:
        return _clean_genres(value)

    @classmethod
    def from_details(cls, details: MediaDetails) -> "Suggestion":
        return cls(
            title=details.title,
            description=details.description,
            genres=list(details.genres),
            poster_url=details.poster_url,
            type=details.type,
        )

    def to_create(self) -> MediaItemCreate:
        """Return the payload that adds this suggestion as a pending item."""

        return MediaItemCreate(
            type=self.type,
            title=self.title,
            genres=list(self.genres),
            status=pending_status(self.type),
            poster_url=self.poster_url,
            description=self.description,
        )


class AutocompleteSuggestion(BaseModel):
    title: str = Field(min_length=1)
    type: MediaType
    year: int | None = None


class GenreCount(BaseModel):
    name: str
    value: int
