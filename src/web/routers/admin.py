"""
Admin API.

Provides endpoints for platform admins to:
- Approve, suspend, delete and fraud-tag practitioners
- Reassign clients a deletion left behind
- Review practitioner applications
- Run the expired-fraud reassignment sweep
- Link a client to a practitioner directly
- Trigger a cache reconciliation pass

All operations are admin-only and emit domain events.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from domain.entities import Account, ApplicationStatus, ConnectionOrigin, PractitionerStatus
from linking.services import LinkingServices

from web.common import format_success_response, get_request_id
from web.dependencies import get_services, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={403: {"description": "Insufficient permissions"}},
)


# =============================================================================
# REQUEST MODELS
# =============================================================================


class ApproveRequest(BaseModel):
    """Optional specialization overrides on approval."""
    specializations: Optional[List[str]] = None


class ReviewRequest(BaseModel):
    """Notes attached to an application decision."""
    note: Optional[str] = Field(None, max_length=1000)


class FraudSweepRequest(BaseModel):
    """Practitioners the admin chose to reassign."""
    selected_ids: List[str] = Field(..., min_length=1)


class DirectConnectRequest(BaseModel):
    """Link a client to a practitioner without an intake request."""
    client_id: str
    practitioner_id: str


# =============================================================================
# PRACTITIONER STATUS
# =============================================================================


@router.get("/practitioners")
async def list_practitioners(
    request: Request,
    status: Optional[PractitionerStatus] = Query(None, description="Filter by status"),
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    practitioners = await linking.admin.list_practitioners(status)
    return format_success_response(
        {"practitioners": [p.to_dict() for p in practitioners], "count": len(practitioners)},
        get_request_id(request),
    )


@router.post("/practitioners/{practitioner_id}/approve")
async def approve_practitioner(
    practitioner_id: str,
    request: Request,
    body: Optional[ApproveRequest] = None,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    practitioner = await linking.admin.approve(
        practitioner_id,
        specializations=body.specializations if body else None,
        actor_id=admin.account_id,
    )
    return format_success_response({"practitioner": practitioner.to_dict()}, get_request_id(request))


@router.post("/practitioners/{practitioner_id}/suspend")
async def suspend_practitioner(
    practitioner_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    """Stop new links. Existing clients are not moved."""
    practitioner = await linking.admin.suspend(practitioner_id, actor_id=admin.account_id)
    return format_success_response({"practitioner": practitioner.to_dict()}, get_request_id(request))


@router.post("/practitioners/{practitioner_id}/fraud")
async def tag_fraud(
    practitioner_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    """Flag as fraudulent and start the appeal window."""
    practitioner = await linking.admin.tag_fraud(practitioner_id, actor_id=admin.account_id)
    return format_success_response({"practitioner": practitioner.to_dict()}, get_request_id(request))


@router.post("/practitioners/{practitioner_id}/clear-fraud")
async def clear_fraud(
    practitioner_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    practitioner = await linking.admin.clear_fraud(practitioner_id, actor_id=admin.account_id)
    return format_success_response({"practitioner": practitioner.to_dict()}, get_request_id(request))


@router.delete("/practitioners/{practitioner_id}")
async def delete_practitioner(
    practitioner_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    """Soft-delete and immediately reassign every client."""
    result = await linking.admin.delete(practitioner_id, actor_id=admin.account_id)
    return format_success_response(result.to_dict(), get_request_id(request))


@router.post("/practitioners/{practitioner_id}/reassign")
async def reassign_remaining_clients(
    practitioner_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    """Move clients a deletion left behind."""
    report = await linking.admin.reassign_remaining(practitioner_id, actor_id=admin.account_id)
    return format_success_response({"reassignment": report.to_dict()}, get_request_id(request))


# =============================================================================
# FRAUD SWEEP
# =============================================================================


@router.get("/fraud-sweep")
async def list_expired_fraud_cases(
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    result = await linking.admin.sweep_expired_fraud_reassignments()
    return format_success_response(result.to_dict(), get_request_id(request))


@router.post("/fraud-sweep")
async def run_fraud_sweep(
    body: FraudSweepRequest,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    result = await linking.admin.sweep_expired_fraud_reassignments(
        body.selected_ids, actor_id=admin.account_id
    )
    return format_success_response(result.to_dict(), get_request_id(request))


# =============================================================================
# APPLICATIONS
# =============================================================================


@router.get("/applications")
async def list_applications(
    request: Request,
    status: Optional[ApplicationStatus] = Query(None, description="Filter by status"),
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    applications = await linking.applications.list_applications(status)
    return format_success_response(
        {"applications": [a.to_dict() for a in applications], "count": len(applications)},
        get_request_id(request),
    )


@router.post("/applications/{application_id}/approve")
async def approve_application(
    application_id: str,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    practitioner = await linking.applications.approve_application(application_id, admin.account_id)
    return format_success_response({"practitioner": practitioner.to_dict()}, get_request_id(request))


@router.post("/applications/{application_id}/reject")
async def reject_application(
    application_id: str,
    request: Request,
    body: Optional[ReviewRequest] = None,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    application = await linking.applications.reject_application(
        application_id, admin.account_id, note=body.note if body else None
    )
    return format_success_response({"application": application.to_dict()}, get_request_id(request))


# =============================================================================
# CONNECTIONS AND CACHE
# =============================================================================


@router.post("/connections")
async def direct_connect(
    body: DirectConnectRequest,
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    connection = await linking.connections.connect(
        body.client_id,
        body.practitioner_id,
        origin=ConnectionOrigin.DIRECT,
        actor_id=admin.account_id,
    )
    return format_success_response({"connection": connection.to_dict()}, get_request_id(request))


@router.post("/reconcile")
async def reconcile(
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    """Replay journaled writes now instead of waiting for the periodic pass."""
    if linking.reconciler is None:
        return format_success_response(
            {"reconciled": False, "reason": "local cache disabled"}, get_request_id(request)
        )
    report = await linking.reconciler.reconcile()
    return format_success_response({"reconciled": True, **report.to_dict()}, get_request_id(request))


@router.post("/invites/expire")
async def expire_invites(
    request: Request,
    admin: Account = Depends(require_admin),
    linking: LinkingServices = Depends(get_services),
):
    expired = await linking.invites.expire_stale_invites()
    return format_success_response({"expired": expired}, get_request_id(request))
