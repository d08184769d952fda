"""
Intake API.

Provides endpoints for:
- Registering the caller as a client
- Requesting a practitioner by code (path A)
- Issuing and redeeming client invites (path B)
- Submitting a needs questionnaire (path C)
- Practitioner inbox and accept/decline decisions
- Applying to become a practitioner
"""

import logging
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from domain.entities import Account, InviteStatus
from linking.services import LinkingServices

from web.common import format_success_response, get_request_id
from web.dependencies import (
    get_current_account_id,
    get_services,
    require_client,
    require_practitioner,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/intake",
    tags=["Intake"],
)


# =============================================================================
# REQUEST MODELS
# =============================================================================


class RegisterClientRequest(BaseModel):
    """Register the authenticated identity as a client."""
    email: Optional[str] = Field(None, max_length=254)
    display_name: Optional[str] = Field(None, max_length=200)


class CodeRequest(BaseModel):
    """Ask to connect with the practitioner behind a code."""
    code: str = Field(..., min_length=1, max_length=32, description="Practitioner code")


class QuestionnaireRequest(BaseModel):
    """Client needs for matching."""
    needed_specializations: List[str] = Field(default_factory=list)
    message: Optional[str] = Field(None, max_length=2000)


class CreateInviteRequest(BaseModel):
    """Invite a client by phone or email."""
    client_contact: str = Field(..., min_length=3, max_length=254)
    client_name: Optional[str] = Field(None, max_length=200)
    note: Optional[str] = Field(None, max_length=1000)
    ttl_hours: Optional[int] = Field(None, ge=1, le=24 * 30)


class VerifyInviteRequest(BaseModel):
    """Redeem an invite."""
    client_contact: str = Field(..., min_length=3, max_length=254)
    code: str = Field(..., min_length=1, max_length=32)


class ApplicationRequest(BaseModel):
    """Apply to become a practitioner."""
    email: str = Field(..., max_length=254)
    first_name: str = Field(..., max_length=100)
    last_name: str = Field(..., max_length=100)
    specializations: List[str] = Field(default_factory=list)
    years_experience: int = Field(0)
    practice_name: Optional[str] = Field(None, max_length=200)
    qualifications: Optional[str] = Field(None, max_length=2000)


# =============================================================================
# REGISTRATION
# =============================================================================


@router.post("/clients")
async def register_client(
    body: RegisterClientRequest,
    request: Request,
    account_id: str = Depends(get_current_account_id),
    linking: LinkingServices = Depends(get_services),
):
    account = await linking.accounts.register_client(account_id, body.email, body.display_name)
    return format_success_response({"account": account.to_dict()}, get_request_id(request))


@router.post("/applications")
async def submit_application(
    body: ApplicationRequest,
    request: Request,
    account_id: str = Depends(get_current_account_id),
    linking: LinkingServices = Depends(get_services),
):
    application = await linking.applications.submit_application(
        account_id,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        specializations=body.specializations,
        years_experience=body.years_experience,
        practice_name=body.practice_name,
        qualifications=body.qualifications,
    )
    return format_success_response({"application": application.to_dict()}, get_request_id(request))


# =============================================================================
# PATH A: PRACTITIONER CODE
# =============================================================================


@router.get("/codes/{code}")
async def resolve_code(
    code: str,
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    """Preview the practitioner behind a code before requesting them."""
    result = await linking.intake.resolve_practitioner_code(code)
    practitioner = result.value
    preview = None
    if practitioner is not None:
        preview = {
            "practitioner_id": practitioner.account_id,
            "display_name": practitioner.display_name,
            "specializations": practitioner.specializations,
        }
    return format_success_response(
        {"practitioner": preview, "stale": result.stale, "source": result.source.value},
        get_request_id(request),
    )


@router.post("/code-requests")
async def request_by_code(
    body: CodeRequest,
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    connection_request = await linking.intake.request_by_code(client.account_id, body.code)
    return format_success_response({"request": connection_request.to_dict()}, get_request_id(request))


# =============================================================================
# PATH B: INVITES
# =============================================================================


@router.post("/invites")
async def create_invite(
    body: CreateInviteRequest,
    request: Request,
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    invite = await linking.invites.create_invite(
        practitioner.account_id,
        body.client_contact,
        client_name=body.client_name,
        note=body.note,
        ttl=timedelta(hours=body.ttl_hours) if body.ttl_hours else None,
    )
    # The code only travels through the notifier
    return format_success_response(
        {"invite": invite.to_dict(include_code=False)}, get_request_id(request)
    )


@router.get("/invites")
async def list_invites(
    request: Request,
    status: Optional[InviteStatus] = Query(None, description="Filter by status"),
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    invites = await linking.invites.list_invites(practitioner.account_id, status)
    return format_success_response(
        {"invites": [i.to_dict(include_code=False) for i in invites], "count": len(invites)},
        get_request_id(request),
    )


@router.post("/invites/verify")
async def verify_invite(
    body: VerifyInviteRequest,
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    connection = await linking.invites.verify_invite(client.account_id, body.client_contact, body.code)
    return format_success_response({"connection": connection.to_dict()}, get_request_id(request))


# =============================================================================
# PATH C: QUESTIONNAIRE
# =============================================================================


@router.post("/questionnaire")
async def submit_questionnaire(
    body: QuestionnaireRequest,
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    connection_request = await linking.intake.submit_questionnaire(
        client.account_id, body.needed_specializations, body.message
    )
    return format_success_response({"request": connection_request.to_dict()}, get_request_id(request))


@router.get("/requests/mine")
async def my_requests(
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    requests = await linking.intake.client_requests(client.account_id)
    return format_success_response(
        {"requests": [r.to_dict() for r in requests], "count": len(requests)},
        get_request_id(request),
    )


@router.post("/requests/{request_id}/rematch")
async def rematch_request(
    request_id: str,
    request: Request,
    client: Account = Depends(require_client),
    linking: LinkingServices = Depends(get_services),
):
    connection_request = await linking.intake.rematch_request(request_id, client_id=client.account_id)
    return format_success_response({"request": connection_request.to_dict()}, get_request_id(request))


# =============================================================================
# PRACTITIONER DECISIONS
# =============================================================================


@router.get("/requests/pending")
async def pending_requests(
    request: Request,
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    """The caller's inbox."""
    requests = await linking.intake.pending_requests(practitioner.account_id)
    return format_success_response(
        {"requests": [r.to_dict() for r in requests], "count": len(requests)},
        get_request_id(request),
    )


@router.post("/requests/{request_id}/accept")
async def accept_request(
    request_id: str,
    request: Request,
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    connection = await linking.intake.accept_request(request_id, practitioner.account_id)
    return format_success_response({"connection": connection.to_dict()}, get_request_id(request))


@router.post("/requests/{request_id}/decline")
async def decline_request(
    request_id: str,
    request: Request,
    practitioner: Account = Depends(require_practitioner),
    linking: LinkingServices = Depends(get_services),
):
    result = await linking.intake.decline_request(request_id, practitioner.account_id)
    return format_success_response(result.to_dict(), get_request_id(request))
