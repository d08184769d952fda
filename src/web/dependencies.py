"""
FastAPI dependency injection for the linking services.

Services come from the service registry; the caller's identity comes from
the bearer token via the registered identity provider.

Usage in endpoints:
    @router.post("/requests/{request_id}/accept")
    async def accept(
        request_id: str,
        practitioner: Account = Depends(require_practitioner),
        linking: LinkingServices = Depends(get_services),
    ):
        ...

For tests, register services in ``core.service_registry.services`` before
creating the app, or override these dependencies:
    app.dependency_overrides[get_current_account_id] = lambda: "client-1"
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config.logging_config import account_id_var
from core.service_registry import services
from domain.entities import Account, AccountRole
from linking.errors import AuthError, NotFound, PermissionDenied
from linking.identity import IdentityProvider
from linking.services import IDENTITY_PROVIDER, LinkingServices, get_linking_services

_bearer = HTTPBearer(auto_error=False)


def get_services() -> LinkingServices:
    return get_linking_services()


def get_identity_provider() -> IdentityProvider:
    identity = services.get(IDENTITY_PROVIDER)
    if identity is None:
        raise RuntimeError("Identity provider is not registered")
    return identity


async def get_current_account_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> str:
    """Account id behind the bearer token. 401 when missing or invalid."""
    token = credentials.credentials if credentials else None
    account_id = identity.current_account_id(token)
    if not account_id:
        raise AuthError("Missing or invalid bearer token")

    account_id_var.set(account_id)
    return account_id


async def get_current_account(
    account_id: str = Depends(get_current_account_id),
    linking: LinkingServices = Depends(get_services),
) -> Account:
    """
    Registered account of the caller. 403 when the identity has no account yet.

    While the Record Store is down the account comes from the local mirror,
    so routes with a cache fallback or a journaled write still answer.
    """
    try:
        result = await linking.accounts.lookup_account(account_id)
    except NotFound as e:
        raise PermissionDenied("Account is not registered") from e
    return result.value


def _require_role(role: AccountRole):
    async def dependency(account: Account = Depends(get_current_account)) -> Account:
        if account.role != role:
            raise PermissionDenied(f"This operation requires a {role.value} account")
        return account
    return dependency


require_client = _require_role(AccountRole.CLIENT)
require_practitioner = _require_role(AccountRole.PRACTITIONER)
require_admin = _require_role(AccountRole.ADMIN)
