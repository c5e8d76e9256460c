"""Coordination of AI suggestion requests per owner."""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..models import AutocompleteSuggestion, MediaType, Suggestion
from ..results import Outcome
from .gemini import GeminiClient
from .watchlist import WatchlistService

logger = logging.getLogger(__name__)


class LatestRequestGuard:
    """Hands out increasing tokens per slot so only the newest result is applied.

    Tokens come from one shared counter, so a slot that was released and later
    reissued never hands out a token an older waiter still holds.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._tokens: dict[str, int] = {}

    def issue(self, slot: str) -> int:
        token = next(self._counter)
        self._tokens[slot] = token
        return token

    def is_current(self, slot: str, token: int) -> bool:
        return self._tokens.get(slot) == token

    def latest(self, slot: str) -> int:
        return self._tokens.get(slot, 0)

    def release(self, slot: str, token: int) -> None:
        """Forget ``slot`` if ``token`` is still its newest request."""

        if self.is_current(slot, token):
            del self._tokens[slot]

    def discard(self, slot: str) -> None:
        """Forget ``slot`` and invalidate any token issued for it."""

        self._tokens.pop(slot, None)


@dataclass(slots=True)
class SuggestionBoard:
    """Suggestions currently shown to an owner."""

    movies: Outcome[list[Suggestion]] = field(default_factory=Outcome.empty)
    books: Outcome[list[Suggestion]] = field(default_factory=Outcome.empty)
    surprise: Outcome[Suggestion] = field(default_factory=Outcome.empty)
    movie_genres: list[str] = field(default_factory=list)
    book_genres: list[str] = field(default_factory=list)
    token: int = 0
    updated_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        def _dump_list(values: list[Suggestion]) -> list[dict[str, Any]]:
            return [value.model_dump(mode="json", by_alias=True) for value in values]

        return {
            "movies": self.movies.to_payload(_dump_list),
            "books": self.books.to_payload(_dump_list),
            "surprise": self.surprise.to_payload(
                lambda value: value.model_dump(mode="json", by_alias=True)
            ),
            "movieGenres": list(self.movie_genres),
            "bookGenres": list(self.book_genres),
            "token": self.token,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class SuggestionService:
    """Builds recommendation boards from an owner's completed items."""

    def __init__(
        self,
        gemini: GeminiClient,
        watchlist: WatchlistService,
        *,
        guard: LatestRequestGuard | None = None,
        genre_limit: int = 3,
        max_boards: int = 1024,
    ):
        self._gemini = gemini
        self._watchlist = watchlist
        self._guard = guard or LatestRequestGuard()
        self._genre_limit = genre_limit
        self._max_boards = max_boards
        self._boards: OrderedDict[str, SuggestionBoard] = OrderedDict()

    def board(self, user_id: str) -> SuggestionBoard:
        return self._boards.get(user_id) or SuggestionBoard()

    async def refresh(self, user_id: str) -> SuggestionBoard:
        """Fetch movie and book suggestions conditioned on the owner's top genres."""

        token = self._guard.issue(user_id)
        movie_genres, book_genres = await asyncio.gather(
            self._watchlist.top_genres(user_id, MediaType.MOVIE, self._genre_limit),
            self._watchlist.top_genres(user_id, MediaType.BOOK, self._genre_limit),
        )
        movies, books = await asyncio.gather(
            self._gemini.fetch_suggestions(movie_genres, MediaType.MOVIE),
            self._gemini.fetch_suggestions(book_genres, MediaType.BOOK),
        )
        board = SuggestionBoard(
            movies=movies,
            books=books,
            movie_genres=movie_genres,
            book_genres=book_genres,
            token=token,
            updated_at=datetime.utcnow(),
        )
        return self._apply(user_id, token, board)

    async def surprise(self, user_id: str) -> SuggestionBoard:
        """Replace the board with a single surprise pick."""

        token = self._guard.issue(user_id)
        pick = await self._gemini.fetch_surprise_suggestion()
        board = SuggestionBoard(surprise=pick, token=token, updated_at=datetime.utcnow())
        return self._apply(user_id, token, board)

    def _apply(self, user_id: str, token: int, board: SuggestionBoard) -> SuggestionBoard:
        if not self._guard.is_current(user_id, token):
            logger.info(
                "Discarding stale suggestions for %s (token %s, latest %s)",
                user_id,
                token,
                self._guard.latest(user_id),
            )
            return self.board(user_id)
        self._guard.release(user_id, token)
        self._boards[user_id] = board
        self._boards.move_to_end(user_id)
        while len(self._boards) > self._max_boards:
            evicted, _ = self._boards.popitem(last=False)
            logger.debug("Evicted suggestion board for %s", evicted)
        return board


class Debouncer:
    """Lets only the last call per key through once a quiet period elapses."""

    def __init__(
        self,
        quiet_period: float,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        guard: LatestRequestGuard | None = None,
    ):
        self._quiet_period = quiet_period
        self._sleep = sleep
        self._guard = guard or LatestRequestGuard()

    async def settle(self, key: str) -> bool:
        """Wait out the quiet period; ``False`` when a newer call arrived meanwhile."""

        token = self._guard.issue(key)
        if self._quiet_period > 0:
            await self._sleep(self._quiet_period)
        current = self._guard.is_current(key, token)
        if current:
            self._guard.release(key, token)
        return current

    def cancel(self, key: str) -> None:
        """Invalidate any call still waiting for ``key``."""

        self._guard.discard(key)


class AutocompleteService:
    """Debounced title completion per typing session."""

    def __init__(self, gemini: GeminiClient, debouncer: Debouncer, *, min_chars: int = 2):
        self._gemini = gemini
        self._debouncer = debouncer
        self._min_chars = min_chars

    async def complete(
        self, session_key: str, query: str
    ) -> Outcome[list[AutocompleteSuggestion]]:
        if len((query or "").strip()) < self._min_chars:
            self._debouncer.cancel(session_key)
            return Outcome.empty()
        if not await self._debouncer.settle(session_key):
            return Outcome.empty("superseded")
        return await self._gemini.fetch_autocomplete_suggestions(query)
