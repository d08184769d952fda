"""
Record Store gateway.

Every read and write the linking services make against the Record Store
goes through RecordStore. An operation is a coroutine taking a unit of work;
the gateway runs it in a fresh transaction under a timeout, retries
transient failures with exponential backoff and turns whatever is left into
StoreUnavailable. Callers decide whether to degrade to the local cache.

IntegrityError is not transient. It passes through untouched so the
operation (or its caller) can map a uniqueness violation to a domain error.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from config.settings import ResilienceSettings, get_settings
from database.unit_of_work import UnitOfWork, UnitOfWorkFactory
from resilience import RetryConfig, RetryExhausted, async_retry

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[UnitOfWork], Awaitable[T]]

_TRANSIENT_ERRORS = (
    OperationalError,
    DBAPIError,
    PoolTimeoutError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)


class ReadSource(str, Enum):
    """Where a read was served from."""
    RECORD_STORE = "record_store"
    LOCAL_CACHE = "local_cache"


@dataclass
class ReadResult(Generic[T]):
    """
    A value plus its provenance.

    ``stale`` is True whenever the value came from the local cache because
    the Record Store could not be reached.
    """
    value: T
    stale: bool = False
    source: ReadSource = ReadSource.RECORD_STORE

    def to_dict(self) -> dict:
        value = self.value
        if isinstance(value, list):
            data: Any = [_serialize(item) for item in value]
        else:
            data = _serialize(value)
        return {"data": data, "stale": self.stale, "source": self.source.value}


def _serialize(value: Any) -> Any:
    if value is None:
        return None
    to_dict = getattr(value, "to_dict", None)
    return to_dict() if callable(to_dict) else value


class RecordStore:
    """
    Transactional gateway with timeout, retry and error translation.

    Usage:
        store = RecordStore(UnitOfWorkFactory(session_factory))

        account = await store.read(lambda uow: uow.accounts.get(account_id), name="get_account")

        async def connect(uow):
            ...
        connection = await store.write(connect, name="connect")
    """

    def __init__(
        self,
        uow_factory: Optional[Callable[[], UnitOfWork]] = None,
        settings: Optional[ResilienceSettings] = None,
    ):
        self._uow_factory = uow_factory or UnitOfWorkFactory()
        self.settings = settings or get_settings().resilience
        self._retry_config = RetryConfig(
            max_attempts=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_initial_delay,
            max_delay=self.settings.retry_max_delay,
            backoff_multiplier=self.settings.retry_backoff_multiplier,
            retryable_exceptions=(StoreUnavailable,),
        )

    def unit_of_work(self) -> UnitOfWork:
        """A fresh unit of work, for callers composing several operations."""
        return self._uow_factory()

    async def read(self, operation: Operation[T], *, name: str = "read") -> T:
        """Run a read-only operation."""
        return await self._run(operation, name)

    async def write(self, operation: Operation[T], *, name: str = "write") -> T:
        """
        Run a mutating operation in one transaction.

        Writes are retried like reads. Every mutation the linking services
        issue is guarded by a compare-and-set, so a retry after an
        unacknowledged commit fails its guard instead of applying twice.
        Operations that must report such a retry as success (connect,
        disconnect) recognise their own earlier effect themselves.
        """
        return await self._run(operation, name)

    async def ping(self) -> bool:
        """True if the Record Store answers a trivial query."""
        try:
            await self._attempt(_ping, "ping")
            return True
        except StoreUnavailable:
            return False

    async def _run(self, operation: Operation[T], name: str) -> T:
        guarded = async_retry(config=self._retry_config)(self._attempt)
        try:
            return await guarded(operation, name)
        except RetryExhausted as e:
            last = e.last_exception
            if isinstance(last, StoreUnavailable):
                raise last from e
            raise StoreUnavailable(f"Record Store unavailable during {name}") from e

    async def _attempt(self, operation: Operation[T], name: str) -> T:
        try:
            return await asyncio.wait_for(
                self._in_transaction(operation),
                timeout=self.settings.store_timeout,
            )
        except IntegrityError:
            raise
        except _TRANSIENT_ERRORS as e:
            logger.warning(f"Record Store {name} failed: {e.__class__.__name__}: {e}")
            raise StoreUnavailable(
                f"Record Store unavailable during {name}",
                {"operation": name, "cause": e.__class__.__name__},
            ) from e

    async def _in_transaction(self, operation: Operation[T]) -> T:
        async with self._uow_factory() as uow:
            return await operation(uow)


async def _ping(uow: UnitOfWork) -> None:
    await uow.session.execute(text("SELECT 1"))
