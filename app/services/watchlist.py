"""Owner-scoped storage of watchlist items."""

from __future__ import annotations

import hashlib
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import MediaItemRecord
from ..models import (
    PLACEHOLDER_POSTER_URL,
    GenreCount,
    MediaItem,
    MediaItemCreate,
    MediaStatus,
    MediaType,
    StatusPhase,
    Suggestion,
    is_valid_status,
    next_status,
    pending_status,
    status_phase,
    statuses_for_phase,
)
from ..utils import poster_placeholder

logger = logging.getLogger(__name__)


class DuplicateItemError(ValueError):
    """Raised when an owner already tracks a title of the same kind."""


@dataclass(slots=True)
class WatchlistSnapshot:
    """Full view of an owner's items plus a token that changes with them."""

    items: list[MediaItem]
    revision: str


class WatchlistService:
    """CRUD operations over :class:`MediaItemRecord` rows for a single owner."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def list_items(
        self,
        user_id: str,
        *,
        media_type: MediaType | None = None,
        phase: StatusPhase | None = None,
    ) -> list[MediaItem]:
        """Return the owner's valid items sorted by title."""

        snapshot = await self.snapshot(user_id, media_type=media_type, phase=phase)
        return snapshot.items

    async def snapshot(
        self,
        user_id: str,
        *,
        media_type: MediaType | None = None,
        phase: StatusPhase | None = None,
    ) -> WatchlistSnapshot:
        """Fetch the owner's items together with a revision token for polling."""

        async with self._session_factory() as session:
            stmt = select(MediaItemRecord).where(MediaItemRecord.user_id == user_id)
            result = await session.execute(stmt)
            records = list(result.scalars().all())

        items: list[MediaItem] = []
        for record in records:
            item = self._to_item(record)
            if item is not None:
                items.append(item)
        items.sort(key=lambda item: (item.title.casefold(), item.id))
        if media_type is not None:
            items = [item for item in items if item.type == media_type]
        if phase is not None:
            allowed = set(statuses_for_phase(phase))
            items = [item for item in items if item.status in allowed]
        return WatchlistSnapshot(items=items, revision=self._revision(records))

    async def get_item(self, user_id: str, item_id: str) -> MediaItem:
        async with self._session_factory() as session:
            record = await self._load(session, user_id, item_id)
            item = self._to_item(record)
        if item is None:
            raise KeyError(f"Item {item_id} is not a valid watchlist entry")
        return item

    async def add_item(self, user_id: str, payload: MediaItemCreate) -> MediaItem:
        """Persist a new item, rejecting duplicates of the same kind and title."""

        status = payload.status or pending_status(payload.type)
        folded = payload.title.casefold()
        async with self._session_factory() as session:
            stmt = select(MediaItemRecord.title).where(
                MediaItemRecord.user_id == user_id,
                MediaItemRecord.type == payload.type.value,
            )
            result = await session.execute(stmt)
            if any(title.casefold() == folded for title in result.scalars()):
                raise DuplicateItemError(f'"{payload.title}" is already in your list.')

            record = MediaItemRecord(
                user_id=user_id,
                type=payload.type.value,
                title=payload.title,
                genres=list(payload.genres),
                status=status.value,
                rating=payload.rating,
                api_id=payload.api_id or uuid4().hex,
                poster_url=payload.poster_url or PLACEHOLDER_POSTER_URL,
                description=payload.description or "",
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)

        logger.info("Added %s %r for %s", payload.type.value, payload.title, user_id)
        item = self._to_item(record)
        if item is None:  # pragma: no cover - payload was validated already
            raise ValueError("Stored item failed validation")
        return item

    async def add_suggestion(self, user_id: str, suggestion: Suggestion) -> MediaItem:
        return await self.add_item(user_id, suggestion.to_create())

    async def delete_item(self, user_id: str, item_id: str) -> None:
        async with self._session_factory() as session:
            record = await self._load(session, user_id, item_id)
            await session.delete(record)
            await session.commit()
        logger.info("Deleted item %s for %s", item_id, user_id)

    async def update_status(
        self, user_id: str, item_id: str, status: MediaStatus
    ) -> MediaItem:
        """Set the status of an item; leaving the completed phase clears the rating."""

        async with self._session_factory() as session:
            record = await self._load(session, user_id, item_id)
            media_type = self._media_type(record)
            if not is_valid_status(media_type, status):
                raise ValueError(
                    f"Status {status.value!r} is not valid for a {media_type.value}"
                )
            self._apply_status(record, status)
            await session.commit()
            await session.refresh(record)
        return self._require_item(record)

    async def advance_status(self, user_id: str, item_id: str) -> MediaItem:
        """Move an item one step along its kind's status cycle."""

        async with self._session_factory() as session:
            record = await self._load(session, user_id, item_id)
            media_type = self._media_type(record)
            try:
                current = MediaStatus(record.status)
            except ValueError as exc:
                raise ValueError(f"Item {item_id} has an unknown status") from exc
            self._apply_status(record, next_status(media_type, current))
            await session.commit()
            await session.refresh(record)
        return self._require_item(record)

    async def update_rating(
        self, user_id: str, item_id: str, rating: int | None
    ) -> MediaItem:
        """Rate a completed item 1-5, or clear the rating with ``None``."""

        if rating is not None and not 1 <= rating <= 5:
            raise ValueError("Rating must be between 1 and 5")
        async with self._session_factory() as session:
            record = await self._load(session, user_id, item_id)
            if rating is not None and not self._require_item(record).is_completed:
                raise ValueError("Only completed items can be rated")
            record.rating = rating
            await session.commit()
            await session.refresh(record)
        return self._require_item(record)

    async def genre_breakdown(
        self,
        user_id: str,
        *,
        media_type: MediaType | None = None,
        limit: int = 7,
    ) -> list[GenreCount]:
        """Count genres across completed items, most frequent first."""

        items = await self.list_items(user_id, media_type=media_type, phase="completed")
        counter: Counter[str] = Counter()
        for item in items:
            counter.update(item.genres)
        ranked = sorted(counter.items(), key=lambda entry: (-entry[1], entry[0]))
        return [GenreCount(name=name, value=count) for name, count in ranked[:limit]]

    async def top_genres(
        self, user_id: str, media_type: MediaType, limit: int = 3
    ) -> list[str]:
        breakdown = await self.genre_breakdown(
            user_id, media_type=media_type, limit=limit
        )
        return [entry.name for entry in breakdown]

    @staticmethod
    async def _load(
        session: AsyncSession, user_id: str, item_id: str
    ) -> MediaItemRecord:
        record = await session.get(MediaItemRecord, item_id)
        if record is None or record.user_id != user_id:
            raise KeyError(f"Item {item_id} not found")
        return record

    @staticmethod
    def _media_type(record: MediaItemRecord) -> MediaType:
        try:
            return MediaType(record.type)
        except ValueError as exc:
            raise ValueError(f"Item {record.id} has an unknown type") from exc

    @staticmethod
    def _apply_status(record: MediaItemRecord, status: MediaStatus) -> None:
        record.status = status.value
        if status_phase(status) != "completed":
            record.rating = None
        record.updated_at = datetime.utcnow()

    def _require_item(self, record: MediaItemRecord) -> MediaItem:
        item = self._to_item(record)
        if item is None:
            raise ValueError(f"Item {record.id} is not a valid watchlist entry")
        return item

    @staticmethod
    def _to_item(record: MediaItemRecord) -> MediaItem | None:
        """Map a stored row to a typed item, or ``None`` when the row is unusable."""

        try:
            media_type = MediaType(record.type)
            status = MediaStatus(record.status)
        except ValueError:
            logger.warning(
                "Skipping item %s with invalid type %r or status %r",
                record.id,
                record.type,
                record.status,
            )
            return None
        if not is_valid_status(media_type, status) or not (record.title or "").strip():
            logger.warning(
                "Skipping item %s: status %r does not fit %s or title is missing",
                record.id,
                record.status,
                record.type,
            )
            return None

        rating = record.rating if isinstance(record.rating, int) else None
        if rating is not None and not 1 <= rating <= 5:
            rating = None
        genres = [g for g in (record.genres or []) if isinstance(g, str)]

        try:
            return MediaItem(
                id=record.id,
                user_id=record.user_id,
                type=media_type,
                title=record.title,
                genres=genres,
                status=status,
                rating=rating,
                api_id=record.api_id or record.id,
                poster_url=record.poster_url or poster_placeholder(record.title),
                description=record.description or "No description available.",
                created_at=record.created_at,
                updated_at=record.updated_at,
            )
        except ValidationError as exc:
            logger.warning("Skipping item %s: %s", record.id, exc)
            return None

    @staticmethod
    def _revision(records: list[MediaItemRecord]) -> str:
        digest = hashlib.sha1()
        for record in sorted(records, key=lambda entry: entry.id):
            stamp = record.updated_at.isoformat() if record.updated_at else ""
            digest.update(
                f"{record.id}|{record.status}|{record.rating}|{stamp}\n".encode("utf-8")
            )
        return digest.hexdigest()
