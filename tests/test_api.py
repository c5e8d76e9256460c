from __future__ import annotations

from datetime import datetime

from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.main import register_routes
from app.models import (
    AutocompleteSuggestion,
    GenreCount,
    MediaDetails,
    MediaItem,
    MediaItemCreate,
    MediaStatus,
    MediaType,
    Suggestion,
)
from app.results import Outcome
from app.services.gemini import GeminiClient
from app.services.suggestions import AutocompleteService, SuggestionBoard, SuggestionService
from app.services.watchlist import DuplicateItemError, WatchlistService, WatchlistSnapshot


def _item(**overrides) -> MediaItem:
    data = {
        "id": "abc",
        "user_id": "user1",
        "type": MediaType.MOVIE,
        "title": "Alien",
        "genres": ["Horror"],
        "status": MediaStatus.TO_WATCH,
        "rating": None,
        "api_id": "348",
        "poster_url": "https://picsum.photos/seed/alien/300/450",
        "description": "In space no one can hear you scream.",
        "created_at": datetime(2024, 1, 1),
        "updated_at": datetime(2024, 1, 1),
    }
    data.update(overrides)
    return MediaItem(**data)


class DummyWatchlistService(WatchlistService):
    """In-memory stand-in that records the owner each call was made for."""

    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        # Deliberately skip super().__init__ to avoid touching a database.
        self.users: list[str] = []
        self.created: list[MediaItemCreate] = []

    async def snapshot(self, user_id, *, media_type=None, phase=None):  # type: ignore[override]
        self.users.append(user_id)
        return WatchlistSnapshot(items=[_item()], revision="rev-1")

    async def add_item(self, user_id, payload):  # type: ignore[override]
        self.users.append(user_id)
        if payload.title == "Duplicate":
            raise DuplicateItemError('"Duplicate" is already in your list.')
        self.created.append(payload)
        return _item(title=payload.title, type=payload.type, status=payload.status)

    async def add_suggestion(self, user_id, suggestion):  # type: ignore[override]
        return await self.add_item(user_id, suggestion.to_create())

    async def get_item(self, user_id, item_id):  # type: ignore[override]
        if item_id != "abc":
            raise KeyError(item_id)
        return _item(user_id=user_id)

    async def delete_item(self, user_id, item_id):  # type: ignore[override]
        if item_id != "abc":
            raise KeyError(item_id)

    async def update_status(self, user_id, item_id, status):  # type: ignore[override]
        if status is MediaStatus.READ:
            raise ValueError("Status 'read' is not valid for a movie")
        return _item(status=status)

    async def advance_status(self, user_id, item_id):  # type: ignore[override]
        return _item(status=MediaStatus.WATCHING)

    async def update_rating(self, user_id, item_id, rating):  # type: ignore[override]
        if rating is not None:
            raise ValueError("Only completed items can be rated")
        return _item()

    async def genre_breakdown(self, user_id, *, media_type=None, limit=7):  # type: ignore[override]
        return [GenreCount(name="Horror", value=2)]


class DummyGemini(GeminiClient):
    def __init__(self, details: Outcome) -> None:  # pragma: no cover - nothing to initialise
        self.details = details

    async def fetch_media_details(self, query):  # type: ignore[override]
        return self.details


class DummySuggestionService(SuggestionService):
    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        self.refreshed: list[str] = []

    def board(self, user_id):  # type: ignore[override]
        return SuggestionBoard()

    async def refresh(self, user_id):  # type: ignore[override]
        self.refreshed.append(user_id)
        return SuggestionBoard(movies=Outcome.failed("rate-limited"), token=1)


class DummyAutocomplete(AutocompleteService):
    def __init__(self) -> None:  # pragma: no cover - nothing to initialise
        self.keys: list[str] = []

    async def complete(self, session_key, query):  # type: ignore[override]
        self.keys.append(session_key)
        return Outcome.ok([AutocompleteSuggestion(title="Dune", type=MediaType.BOOK, year=1965)])


def _client(**state) -> TestClient:
    app = FastAPI()
    register_routes(app)
    for name, value in state.items():
        setattr(app.state, name, value)
    return TestClient(app)


def test_list_media_uses_header_owner_and_etag() -> None:
    service = DummyWatchlistService()
    with _client(watchlist_service=service) as client:
        response = client.get("/api/media", headers={"X-User-Id": "alice"})
        etag = response.headers["etag"]
        cached = client.get(
            "/api/media", headers={"X-User-Id": "alice", "If-None-Match": etag}
        )

    assert response.status_code == 200
    assert response.json()[0]["posterUrl"] == "https://picsum.photos/seed/alien/300/450"
    assert cached.status_code == 304
    assert service.users == ["alice", "alice"]


def test_list_media_defaults_owner() -> None:
    service = DummyWatchlistService()
    with _client(watchlist_service=service) as client:
        client.get("/api/media")

    assert service.users == ["user1"]


def test_add_media_validates_and_reports_duplicates() -> None:
    service = DummyWatchlistService()
    with _client(watchlist_service=service) as client:
        created = client.post("/api/media", json={"type": "book", "title": "Dune"})
        duplicate = client.post("/api/media", json={"type": "book", "title": "Duplicate"})
        invalid = client.post(
            "/api/media", json={"type": "movie", "title": "Alien", "status": "read"}
        )
        garbage = client.post(
            "/api/media",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

    assert created.status_code == 201
    assert created.json()["status"] == "to-read"
    assert duplicate.status_code == 409
    assert invalid.status_code == 400
    assert garbage.status_code == 400


def test_add_media_from_suggestion() -> None:
    service = DummyWatchlistService()
    suggestion = Suggestion(
        title="Piranesi",
        description="A house of endless halls.",
        genres=["Fantasy"],
        posterUrl="https://picsum.photos/seed/piranesi/300/450",
        type=MediaType.BOOK,
    )
    with _client(watchlist_service=service) as client:
        response = client.post(
            "/api/media/from-suggestion",
            json=suggestion.model_dump(mode="json", by_alias=True),
        )

    assert response.status_code == 201
    assert service.created[0].status is MediaStatus.TO_READ


def test_add_media_from_suggestion_rejects_unstorable_titles() -> None:
    service = DummyWatchlistService()
    body = {
        "title": "x" * 301,
        "description": "Too long to store.",
        "genres": [],
        "posterUrl": "https://picsum.photos/seed/x/300/450",
        "type": "movie",
    }
    with _client(watchlist_service=service) as client:
        too_long = client.post("/api/media/from-suggestion", json=body)
        blank = client.post("/api/media/from-suggestion", json={**body, "title": "   "})

    assert too_long.status_code == 400
    assert blank.status_code == 400
    assert service.created == []


def test_get_single_media_item() -> None:
    with _client(watchlist_service=DummyWatchlistService()) as client:
        found = client.get("/api/media/abc", headers={"X-User-Id": "alice"})
        missing = client.get("/api/media/nope")

    assert found.status_code == 200
    assert found.json()["user_id"] == "alice"
    assert missing.status_code == 404


def test_item_mutations_map_errors() -> None:
    with _client(watchlist_service=DummyWatchlistService()) as client:
        deleted = client.delete("/api/media/abc")
        missing = client.delete("/api/media/nope")
        bad_status = client.put("/api/media/abc/status", json={"status": "read"})
        unknown_status = client.put("/api/media/abc/status", json={"status": "lost"})
        advanced = client.post("/api/media/abc/status/next")
        bad_rating = client.put("/api/media/abc/rating", json={"rating": 4})
        out_of_range = client.put("/api/media/abc/rating", json={"rating": 9})
        cleared = client.put("/api/media/abc/rating", json={"rating": None})

    assert deleted.json() == {"message": "Item deleted"}
    assert missing.status_code == 404
    assert bad_status.status_code == 400
    assert unknown_status.status_code == 400
    assert advanced.json()["status"] == "watching"
    assert bad_rating.status_code == 400
    assert out_of_range.status_code == 400
    assert cleared.status_code == 200


def test_genre_analytics() -> None:
    with _client(watchlist_service=DummyWatchlistService()) as client:
        response = client.get("/api/analytics/genres")

    assert response.json() == [{"name": "Horror", "value": 2}]


def test_lookup_distinguishes_empty_from_failure() -> None:
    details = MediaDetails(
        title="Dune",
        type=MediaType.BOOK,
        genres=["Sci-Fi"],
        description="Spice.",
        posterUrl="https://picsum.photos/seed/dune/300/450",
    )
    with _client(gemini=DummyGemini(Outcome.ok(details))) as client:
        ok = client.get("/api/lookup", params={"query": "Dune"})
    with _client(gemini=DummyGemini(Outcome.empty())) as client:
        empty = client.get("/api/lookup", params={"query": "Dune"})
    with _client(gemini=DummyGemini(Outcome.failed("missing-credential"))) as client:
        failed = client.get("/api/lookup", params={"query": "Dune"})

    assert ok.status_code == 200
    assert ok.json()["data"]["type"] == "book"
    assert empty.status_code == 200
    assert empty.json() == {"status": "empty", "data": None, "reason": None}
    assert failed.status_code == 503
    assert failed.json()["reason"] == "missing-credential"


def test_suggestion_routes() -> None:
    service = DummySuggestionService()
    with _client(suggestion_service=service) as client:
        current = client.get("/api/suggestions")
        refreshed = client.post("/api/suggestions/refresh", headers={"X-User-Id": "bob"})

    assert current.json()["movies"]["status"] == "empty"
    assert refreshed.json()["movies"] == {
        "status": "failed",
        "data": None,
        "reason": "rate-limited",
    }
    assert service.refreshed == ["bob"]


def test_autocomplete_prefers_session_header() -> None:
    service = DummyAutocomplete()
    with _client(autocomplete_service=service) as client:
        response = client.get(
            "/api/autocomplete", params={"q": "Dun"}, headers={"X-Session-Id": "tab-1"}
        )

    assert response.json()["data"] == [{"title": "Dune", "type": "book", "year": 1965}]
    assert service.keys == ["tab-1"]


def test_missing_service_is_reported() -> None:
    app = FastAPI()
    register_routes(app)
    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/healthz")
        broken = client.get("/api/media")

    assert response.json() == {"status": "ok"}
    assert broken.status_code == 500
