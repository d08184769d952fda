"""Client and admin account registration.

Accounts are keyed by the identity provider's account id. Registration only
records the role; credentials never reach this service.
"""

import logging
from typing import Optional

from cache.local_cache import LocalCache
from database.unit_of_work import UnitOfWork
from domain.entities import Account, AccountRole

from .codes import normalize_contact
from .errors import InvalidInput, NotFound, StoreUnavailable
from .record_store import ReadResult, ReadSource, RecordStore

logger = logging.getLogger(__name__)


class AccountService:
    """Registers identities as clients or admins and looks accounts up."""

    def __init__(self, store: RecordStore, cache: Optional[LocalCache] = None):
        self._store = store
        self._cache = cache

    async def register_client(
        self,
        account_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Account:
        """Create a client account. Re-registering an existing client is a no-op."""
        return await self._register(account_id, AccountRole.CLIENT, email, display_name)

    async def register_admin(
        self,
        account_id: str,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> Account:
        return await self._register(account_id, AccountRole.ADMIN, email, display_name)

    async def get_account(self, account_id: str) -> Account:
        account = await self._store.read(
            lambda uow: uow.accounts.get(account_id), name="get_account"
        )
        if account is None:
            raise NotFound(f"Account {account_id} not found")
        await self._mirror(account)
        return account

    async def lookup_account(self, account_id: str) -> ReadResult[Account]:
        """
        Account, falling back to the local mirror when the store is down.

        Raises:
            NotFound: The store has no such account.
            StoreUnavailable: The store is down and the account was never mirrored.
        """
        try:
            return ReadResult(await self.get_account(account_id))
        except StoreUnavailable:
            if self._cache is None:
                raise
            cached = await self._cache.get_account(account_id)
            if cached is None:
                raise
            logger.warning(f"Serving cached account {account_id}: store unavailable")
            return ReadResult(cached, stale=True, source=ReadSource.LOCAL_CACHE)

    async def _register(
        self,
        account_id: str,
        role: AccountRole,
        email: Optional[str],
        display_name: Optional[str],
    ) -> Account:
        if not (account_id or "").strip():
            raise InvalidInput("Account id is required")

        normalized_email = None
        if email:
            normalized_email = normalize_contact(email)
            if normalized_email is None or "@" not in normalized_email:
                raise InvalidInput("Invalid email address")

        account = Account(
            account_id=account_id,
            role=role,
            email=normalized_email,
            display_name=display_name,
        )
        account = await self._store.write(
            lambda uow: self._register_in(uow, account), name=f"register_{role.value}"
        )
        await self._mirror(account)
        return account

    @staticmethod
    async def _register_in(uow: UnitOfWork, account: Account) -> Account:
        existing = await uow.accounts.get(account.account_id)
        if existing is not None:
            if existing.role != account.role:
                raise InvalidInput(
                    f"Account {account.account_id} is already registered as {existing.role.value}"
                )
            return existing

        await uow.accounts.add(account)
        logger.info(f"Registered {account.role.value} account {account.account_id}")
        return account

    async def _mirror(self, account: Account) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.mirror_account(account)
        except Exception as e:
            logger.warning(f"Could not mirror account {account.account_id}: {e}")
