"""Tests for async database engine module."""

import pytest
from contextlib import asynccontextmanager
from unittest.mock import patch, MagicMock, AsyncMock

from sqlalchemy import inspect
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from config.database import DatabaseSettings


@pytest.fixture
def sqlite_settings(tmp_path):
    return DatabaseSettings(driver="sqlite+aiosqlite", sqlite_path=tmp_path / "records.db")


class TestCreateEngine:
    """Tests for create_engine function."""

    def test_sqlite_uses_null_pool(self, sqlite_settings):
        with patch('database.async_engine.create_async_engine') as mock_create:
            with patch('database.async_engine._setup_sqlite_pragmas') as mock_pragmas:
                mock_engine = MagicMock()
                mock_create.return_value = mock_engine

                from database.async_engine import create_engine
                engine = create_engine(sqlite_settings)

                assert engine is mock_engine
                call_kwargs = mock_create.call_args[1]
                assert call_kwargs['poolclass'] is NullPool
                assert "pool_size" not in call_kwargs
                mock_pragmas.assert_called_once_with(mock_engine)

    def test_postgres_uses_queue_pool(self):
        with patch('database.async_engine.create_async_engine') as mock_create:
            with patch('database.async_engine._setup_sqlite_pragmas') as mock_pragmas:
                from database.async_engine import create_engine

                settings = DatabaseSettings(
                    driver="postgresql+asyncpg",
                    host="localhost",
                    port=5432,
                    name="testdb",
                    pool_size=5,
                )
                create_engine(settings)

                call_kwargs = mock_create.call_args[1]
                assert call_kwargs['poolclass'] is AsyncAdaptedQueuePool
                assert call_kwargs['pool_size'] == 5
                mock_pragmas.assert_not_called()

    def test_echo_sql_propagates(self, tmp_path):
        with patch('database.async_engine.create_async_engine') as mock_create:
            with patch('database.async_engine._setup_sqlite_pragmas'):
                from database.async_engine import create_engine

                create_engine(DatabaseSettings(sqlite_path=tmp_path / "x.db", echo_sql=True))

                assert mock_create.call_args[1]['echo'] is True


class TestGlobalEngine:
    """Tests for the lazily created global engine and session factory."""

    def test_returns_same_instance(self, sqlite_settings):
        with patch('database.async_engine.create_engine') as mock_create:
            mock_create.return_value = MagicMock()

            from database.async_engine import get_async_engine, get_async_session_factory

            first = get_async_engine(sqlite_settings)
            second = get_async_engine()

            assert first is second
            mock_create.assert_called_once_with(sqlite_settings)
            assert get_async_session_factory() is get_async_session_factory()


class TestInitDatabase:

    @pytest.mark.asyncio
    async def test_creates_schema(self, sqlite_settings):
        from database.async_engine import create_engine, init_database

        engine = create_engine(sqlite_settings)
        try:
            await init_database(engine=engine)

            async with engine.connect() as conn:
                tables = await conn.run_sync(lambda sync: inspect(sync).get_table_names())
        finally:
            await engine.dispose()

        assert {
            "accounts",
            "connections",
            "connection_requests",
            "client_invites",
            "practitioner_applications",
        } <= set(tables)

    @pytest.mark.asyncio
    async def test_sqlite_pragmas(self, db_engine):
        async with db_engine.connect() as conn:
            journal_mode = (await conn.exec_driver_sql("PRAGMA journal_mode")).scalar()
            foreign_keys = (await conn.exec_driver_sql("PRAGMA foreign_keys")).scalar()

        assert journal_mode == "wal"
        assert foreign_keys == 1


class TestCloseDatabase:

    @pytest.mark.asyncio
    async def test_closes_engine(self):
        import database.async_engine as module

        mock_engine = AsyncMock()
        module._async_engine = mock_engine

        from database.async_engine import close_database

        await close_database()

        mock_engine.dispose.assert_called_once()
        assert module._async_engine is None
        assert module._async_session_factory is None

    @pytest.mark.asyncio
    async def test_safe_to_call_without_engine(self):
        from database.async_engine import close_database

        await close_database()


class TestDatabaseHealth:
    """Tests for DatabaseHealth utility class."""

    @pytest.mark.asyncio
    async def test_check_returns_healthy_status(self, db_engine):
        from database.async_engine import DatabaseHealth

        result = await DatabaseHealth(db_engine).check()

        assert result["status"] == "healthy"
        assert result["dialect"] == "sqlite"
        assert result["pool"] == {}

    @pytest.mark.asyncio
    async def test_check_returns_unhealthy_on_error(self):
        @asynccontextmanager
        async def mock_connect():
            raise ConnectionRefusedError("Connection failed")
            yield  # Never reached

        mock_engine = MagicMock()
        mock_engine.connect = mock_connect

        with patch('database.async_engine.get_async_engine', return_value=mock_engine):
            from database.async_engine import DatabaseHealth

            result = await DatabaseHealth().check()

            assert result["status"] == "unhealthy"
            assert "Connection failed" in result["error"]
