from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database
from app.services.watchlist import WatchlistService


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a media_items table from before posters and descriptions were stored."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE media_items (
                        id VARCHAR(32) PRIMARY KEY,
                        user_id VARCHAR(128),
                        type VARCHAR(16),
                        title VARCHAR(300),
                        genres JSON,
                        status VARCHAR(16),
                        rating INTEGER,
                        created_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    """
                    INSERT INTO media_items
                        (id, user_id, type, title, genres, status, rating, created_at)
                    VALUES
                        ('legacy1', 'user1', 'movie', 'Inception', '["Sci-Fi"]',
                         'watched', 5, '2024-01-01 00:00:00.000000'),
                        ('legacy2', 'user1', 'movie', 'Broken', '[]',
                         'listened', NULL, '2024-01-01 00:00:00.000000')
                    """
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_missing_columns(tmp_path) -> None:
    """Schema migrations should backfill columns added after the first release."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")

    async def runner():
        await database.create_all()
        try:
            return await WatchlistService(database.session_factory).list_items("user1")
        finally:
            await database.dispose()

    items = asyncio.run(runner())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("media_items")}
    finally:
        inspector_engine.dispose()

    assert {"api_id", "poster_url", "description", "updated_at"} <= columns
    # Rows with an unknown status are skipped rather than failing the listing.
    assert [item.title for item in items] == ["Inception"]
    assert items[0].api_id == "legacy1"
    assert items[0].poster_url == "https://picsum.photos/seed/inception/300/450"
