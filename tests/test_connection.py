"""
Tests for engine configuration and the request-scoped session dependency.
"""
from typing import Any
from unittest.mock import AsyncMock

import pytest

from pix_orchestrator.config import Settings
from pix_orchestrator.database import connection


class TestEngineOptions:
    """Test suite for engine option selection."""

    @pytest.mark.unit
    def test_postgres_gets_pool_sizing(self) -> None:
        settings = Settings(
            database_url="postgresql+asyncpg://pix:pix@db:5432/pix",
            database_pool_size=7,
            database_max_overflow=3,
        )

        options = connection._engine_options(settings)

        assert options["pool_size"] == 7
        assert options["max_overflow"] == 3
        assert options["pool_pre_ping"] is True

    @pytest.mark.unit
    def test_sqlite_skips_pool_sizing(self) -> None:
        options = connection._engine_options(Settings(database_url="sqlite+aiosqlite://"))

        assert "pool_size" not in options
        assert "max_overflow" not in options


class TestSessionLifecycle:
    """Test suite for get_db and close_db."""

    @pytest.fixture(autouse=True)
    def sqlite_settings(self, mocker: Any, tmp_path: Any) -> None:
        settings = Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'lifecycle.db'}")
        mocker.patch.object(connection, "get_settings", return_value=settings)
        mocker.patch.object(connection, "_engine", None)
        mocker.patch.object(connection, "_session_factory", None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_factory_is_shared_until_closed(self) -> None:
        first = connection.get_session_factory()
        assert connection.get_session_factory() is first

        await connection.close_db()

        assert connection._engine is None
        assert connection.get_session_factory() is not first
        await connection.close_db()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_get_db_rolls_back_on_error(self, mocker: Any) -> None:
        sessions = connection.get_db()
        session = await sessions.__anext__()
        rollback = mocker.patch.object(session, "rollback", new_callable=AsyncMock)

        with pytest.raises(RuntimeError):
            await sessions.athrow(RuntimeError("handler failed"))

        rollback.assert_awaited_once()
        await connection.close_db()
