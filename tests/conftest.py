"""Pytest configuration and fixtures for test suite."""

import os
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pytest
import pytest_asyncio

# Set test environment BEFORE any other imports
os.environ.setdefault("APP_ENVIRONMENT", "test")
os.environ.setdefault("DB_DRIVER", "sqlite+aiosqlite")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-production-use-0123456789")
os.environ.setdefault("APP_ENABLE_CACHE", "false")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from cache.local_cache import LocalCache  # noqa: E402
from cache.redis_client import RedisClient  # noqa: E402
from config.database import DatabaseSettings  # noqa: E402
from config.settings import LinkingSettings, RedisSettings, ResilienceSettings, Settings  # noqa: E402
from database.async_engine import create_engine, get_session_factory, init_database  # noqa: E402
from database.unit_of_work import UnitOfWorkFactory  # noqa: E402
from domain.entities import Account, AccountRole, PractitionerStatus, utc_now  # noqa: E402
from domain.event_bus import reset_event_bus  # noqa: E402
from linking.record_store import RecordStore  # noqa: E402
from linking.services import build_linking_services  # noqa: E402


def _reset_db_modules():
    """Reset database module globals to ensure clean state."""
    import database.async_engine as module
    module._async_engine = None
    module._async_session_factory = None


@pytest.fixture(autouse=True)
def reset_database_globals():
    """Reset database module globals before and after each test."""
    _reset_db_modules()
    yield
    _reset_db_modules()


@pytest.fixture(autouse=True)
def reset_events():
    """Fresh event bus per test."""
    reset_event_bus()
    yield
    reset_event_bus()


# =============================================================================
# IN-MEMORY REDIS
# =============================================================================

class InMemoryRedis:
    """
    The subset of redis.asyncio.Redis that RedisClient uses, backed by dicts.

    Set ``fail = True`` to make every call raise ConnectionError.
    """

    def __init__(self):
        self.strings: Dict[str, str] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis down")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.strings.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.strings[key] = value
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            removed += int(self.strings.pop(key, None) is not None)
            removed += int(self.hashes.pop(key, None) is not None)
        return removed

    async def hset(self, name, key, value):
        self._check()
        self.hashes.setdefault(name, {})[key] = value
        return 1

    async def hgetall(self, name):
        self._check()
        return dict(self.hashes.get(name, {}))

    async def hdel(self, name, *keys):
        self._check()
        bucket = self.hashes.get(name, {})
        return sum(1 for key in keys if bucket.pop(key, None) is not None)

    async def aclose(self):
        return None


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def redis_client(fake_redis):
    return RedisClient(settings=RedisSettings(), client=fake_redis)


@pytest.fixture
def cache(redis_client):
    return LocalCache(redis_client, device_id="test-device")


# =============================================================================
# RECORD STORE
# =============================================================================

@pytest.fixture
def resilience_settings():
    return ResilienceSettings(
        store_timeout=10.0,
        retry_max_attempts=2,
        retry_initial_delay=0.01,
        retry_max_delay=0.02,
    )


@pytest.fixture
def linking_settings():
    return LinkingSettings()


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine(DatabaseSettings(
        driver="sqlite+aiosqlite",
        sqlite_path=tmp_path / "records.db",
    ))
    await init_database(engine=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory(db_engine)


class SwitchableRecordStore(RecordStore):
    """RecordStore that can be taken offline: every attempt then fails as transient."""

    offline = False

    async def _in_transaction(self, operation):
        if self.offline:
            raise ConnectionRefusedError("record store offline")
        return await super()._in_transaction(operation)


@pytest.fixture
def store(session_factory, resilience_settings):
    return SwitchableRecordStore(UnitOfWorkFactory(session_factory), settings=resilience_settings)


@pytest.fixture
def linking(store, cache):
    """Every linking service over a temp SQLite store and an in-memory cache."""
    return build_linking_services(store=store, cache=cache, settings=Settings())


# =============================================================================
# SEEDING
# =============================================================================

class AccountSeeder:
    """Writes accounts straight into the Record Store."""

    def __init__(self, store: RecordStore):
        self._store = store
        self._clock = utc_now() - timedelta(days=1)

    def _next_created_at(self) -> datetime:
        # Distinct, increasing creation times keep tie-breaks deterministic
        self._clock += timedelta(seconds=1)
        return self._clock

    async def _add(self, account: Account) -> Account:
        async def op(uow):
            await uow.accounts.add(account)
            return account
        return await self._store.write(op, name="seed")

    async def account(self, account_id: str) -> Optional[Account]:
        """Current state of an account, straight from the store."""
        return await self._store.read(lambda uow: uow.accounts.get(account_id))

    async def client(self, account_id: str, **fields: Any) -> Account:
        return await self._add(Account(
            account_id=account_id,
            role=AccountRole.CLIENT,
            email=fields.pop("email", f"{account_id}@example.com"),
            created_at=self._next_created_at(),
            **fields,
        ))

    async def admin(self, account_id: str = "admin-1") -> Account:
        return await self._add(Account(
            account_id=account_id,
            role=AccountRole.ADMIN,
            created_at=self._next_created_at(),
        ))

    async def practitioner(
        self,
        account_id: str,
        *,
        specializations: Optional[Iterable[str]] = None,
        status: PractitionerStatus = PractitionerStatus.APPROVED,
        rotation_cursor: int = 0,
        code: Optional[str] = None,
        **fields: Any,
    ) -> Account:
        return await self._add(Account(
            account_id=account_id,
            role=AccountRole.PRACTITIONER,
            display_name=fields.pop("display_name", account_id.title()),
            practitioner_status=status,
            practitioner_code=code,
            rotation_cursor=rotation_cursor,
            specializations=list(specializations or []),
            created_at=self._next_created_at(),
            **fields,
        ))


@pytest.fixture
def seed(store):
    return AccountSeeder(store)
