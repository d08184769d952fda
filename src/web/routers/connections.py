"""
Connections API.

Provides endpoints for:
- Clients to view and end their current link
- Practitioners to view their roster
- Either side to check whether a link exists

Reads that go through the cache fallback carry ``stale`` and ``source``.
"""

import logging

from fastapi import APIRouter, Depends, Query, Request

from domain.entities import Account, AccountRole
from linking.errors import PermissionDenied
from linking.services import LinkingServices

from web.common import format_success_response, get_request_id
from web.dependencies import get_current_account, get_services, require_client, require_practitioner

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/connections",
    tags=["Connections"],
)


@router.get("/me")
async def get_my_connection(
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    """The caller's active link, served from the cache when the store is down."""
    result = await linking.connections.lookup_connection(client.account_id)
    return format_success_response(
        {"connection": result.to_dict()["data"], "stale": result.stale, "source": result.source.value},
        get_request_id(request),
    )


@router.delete("/me")
async def disconnect(
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    """End the caller's active link. Disconnecting twice is not an error."""
    ended = await linking.connections.disconnect(client.account_id, actor_id=client.account_id)
    return format_success_response({"disconnected": ended}, get_request_id(request))


@router.get("/me/history")
async def connection_history(
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    history = await linking.connections.connection_history(client.account_id)
    return format_success_response(
        {"connections": [c.to_dict() for c in history], "count": len(history)},
        get_request_id(request),
    )


@router.get("/roster")
async def get_roster(
    request: Request,
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    """The caller's connected clients."""
    result = await linking.connections.lookup_roster(practitioner.account_id)
    clients = result.to_dict()["data"]
    return format_success_response(
        {
            "clients": clients,
            "count": len(clients),
            "stale": result.stale,
            "source": result.source.value,
        },
        get_request_id(request),
    )


@router.get("/check")
async def check_connection(
    request: Request,
    client_id: str = Query(..., description="Client account id"),
    practitioner_id: str = Query(..., description="Practitioner account id"),
    account: Account = Depends(get_current_account),
    linking: LinkingServices = Depends(get_services),
):
    """Authoritative link check. Callers may only ask about their own links."""
    if account.role != AccountRole.ADMIN and account.account_id not in (client_id, practitioner_id):
        raise PermissionDenied("You can only check your own connections")

    connected = await linking.connections.is_connected(client_id, practitioner_id)
    return format_success_response({"connected": connected}, get_request_id(request))
