"""Entry point for the FastAPI-powered watchlist service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ValidationError

from .config import settings
from .database import Database
from .models import (
    MediaItem,
    MediaItemCreate,
    MediaType,
    RatingUpdate,
    StatusPhase,
    StatusUpdate,
    Suggestion,
)
from .results import Outcome
from .services.gemini import GeminiClient
from .services.suggestions import AutocompleteService, Debouncer, SuggestionService
from .services.watchlist import DuplicateItemError, WatchlistService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    gemini_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.gemini_api_url),
            timeout=httpx.Timeout(60.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    gemini = GeminiClient(settings, gemini_http_client)
    watchlist = WatchlistService(database.session_factory)
    suggestions = SuggestionService(gemini, watchlist)
    autocomplete = AutocompleteService(
        gemini,
        Debouncer(settings.autocomplete_debounce_seconds),
        min_chars=settings.autocomplete_min_chars,
    )

    fastapi_app.state.database = database
    fastapi_app.state.gemini = gemini
    fastapi_app.state.watchlist_service = watchlist
    fastapi_app.state.suggestion_service = suggestions
    fastapi_app.state.autocomplete_service = autocomplete

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Movie and book watchlist with Gemini-powered suggestions",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
        expose_headers=["ETag"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _require_state(fastapi_app: FastAPI, name: str, expected: type) -> Any:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, expected):
        raise RuntimeError(f"{name.replace('_', ' ').capitalize()} not initialised")
    return service


def get_watchlist_service(fastapi_app: FastAPI) -> WatchlistService:
    return _require_state(fastapi_app, "watchlist_service", WatchlistService)


def get_gemini_client(fastapi_app: FastAPI) -> GeminiClient:
    return _require_state(fastapi_app, "gemini", GeminiClient)


def get_suggestion_service(fastapi_app: FastAPI) -> SuggestionService:
    return _require_state(fastapi_app, "suggestion_service", SuggestionService)


def get_autocomplete_service(fastapi_app: FastAPI) -> AutocompleteService:
    return _require_state(fastapi_app, "autocomplete_service", AutocompleteService)


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/media")
    async def list_media(
        request: Request,
        type: MediaType | None = None,
        phase: StatusPhase | None = None,
    ) -> Response:
        service = get_watchlist_service(fastapi_app)
        user_id = _resolve_user(request)
        snapshot = await service.snapshot(user_id, media_type=type, phase=phase)
        etag = '"{}-{}-{}"'.format(
            snapshot.revision[:20],
            type.value if type else "all",
            phase or "all",
        )
        if request.headers.get("if-none-match") == etag:
            return Response(status_code=304, headers={"ETag": etag})
        return JSONResponse(
            [_dump_item(item) for item in snapshot.items], headers={"ETag": etag}
        )

    @fastapi_app.post("/api/media", status_code=201)
    async def add_media(request: Request) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        payload = _parse_body(await _read_json(request), MediaItemCreate)
        try:
            item = await service.add_item(_resolve_user(request), payload)
        except DuplicateItemError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _dump_item(item)

    @fastapi_app.post("/api/media/from-suggestion", status_code=201)
    async def add_media_from_suggestion(request: Request) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        suggestion = _parse_body(await _read_json(request), Suggestion)
        try:
            item = await service.add_suggestion(_resolve_user(request), suggestion)
        except DuplicateItemError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValidationError as exc:
            raise HTTPException(
                status_code=400,
                detail=exc.errors(include_url=False, include_context=False),
            ) from exc
        return _dump_item(item)

    @fastapi_app.get("/api/media/{item_id}")
    async def get_media(request: Request, item_id: str) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        try:
            item = await service.get_item(_resolve_user(request), item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        return _dump_item(item)

    @fastapi_app.delete("/api/media/{item_id}")
    async def delete_media(request: Request, item_id: str) -> dict[str, str]:
        service = get_watchlist_service(fastapi_app)
        try:
            await service.delete_item(_resolve_user(request), item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        return {"message": "Item deleted"}

    @fastapi_app.put("/api/media/{item_id}/status")
    async def update_media_status(request: Request, item_id: str) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        update = _parse_body(await _read_json(request), StatusUpdate)
        try:
            item = await service.update_status(
                _resolve_user(request), item_id, update.status
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _dump_item(item)

    @fastapi_app.post("/api/media/{item_id}/status/next")
    async def advance_media_status(request: Request, item_id: str) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        try:
            item = await service.advance_status(_resolve_user(request), item_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _dump_item(item)

    @fastapi_app.put("/api/media/{item_id}/rating")
    async def update_media_rating(request: Request, item_id: str) -> dict[str, Any]:
        service = get_watchlist_service(fastapi_app)
        update = _parse_body(await _read_json(request), RatingUpdate)
        try:
            item = await service.update_rating(
                _resolve_user(request), item_id, update.rating
            )
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found") from exc
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _dump_item(item)

    @fastapi_app.get("/api/analytics/genres")
    async def genre_analytics(
        request: Request, type: MediaType | None = None
    ) -> list[dict[str, Any]]:
        service = get_watchlist_service(fastapi_app)
        breakdown = await service.genre_breakdown(
            _resolve_user(request),
            media_type=type,
            limit=settings.genre_analytics_limit,
        )
        return [entry.model_dump() for entry in breakdown]

    @fastapi_app.get("/api/lookup")
    async def lookup_media(query: str) -> JSONResponse:
        gemini = get_gemini_client(fastapi_app)
        outcome = await gemini.fetch_media_details(query)
        return _outcome_response(
            outcome, lambda details: details.model_dump(mode="json", by_alias=True)
        )

    @fastapi_app.get("/api/suggestions")
    async def current_suggestions(request: Request) -> dict[str, Any]:
        service = get_suggestion_service(fastapi_app)
        return service.board(_resolve_user(request)).to_payload()

    @fastapi_app.post("/api/suggestions/refresh")
    async def refresh_suggestions(request: Request) -> dict[str, Any]:
        service = get_suggestion_service(fastapi_app)
        board = await service.refresh(_resolve_user(request))
        return board.to_payload()

    @fastapi_app.post("/api/suggestions/surprise")
    async def surprise_suggestion(request: Request) -> dict[str, Any]:
        service = get_suggestion_service(fastapi_app)
        board = await service.surprise(_resolve_user(request))
        return board.to_payload()

    @fastapi_app.get("/api/autocomplete")
    async def autocomplete(request: Request, q: str = "") -> JSONResponse:
        service = get_autocomplete_service(fastapi_app)
        session_key = request.headers.get("x-session-id") or _resolve_user(request)
        outcome = await service.complete(session_key, q)
        return _outcome_response(
            outcome,
            lambda entries: [entry.model_dump(mode="json") for entry in entries],
        )


def _resolve_user(request: Request) -> str:
    user_id = (request.headers.get("x-user-id") or "").strip()
    return user_id or settings.default_user_id


async def _read_json(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid payload") from exc


def _parse_body(payload: Any, model: type[BaseModel]) -> Any:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(
            status_code=400,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc


def _dump_item(item: MediaItem) -> dict[str, Any]:
    return item.model_dump(mode="json", by_alias=True)


def _outcome_response(outcome: Outcome[Any], serialise) -> JSONResponse:
    status_code = 503 if outcome.is_failed else 200
    return JSONResponse(outcome.to_payload(serialise), status_code=status_code)


app = create_app()
