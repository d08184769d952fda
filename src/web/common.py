"""
Common utilities for the HTTP API.

Response envelopes, request ids and the mapping from linking errors to JSON
responses.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from domain.entities import utc_now
from linking.errors import LinkingError

logger = logging.getLogger(__name__)


# =============================================================================
# RESPONSE FORMATTING
# =============================================================================

def format_error_response(
    message: str,
    code: str = "linking_error",
    details: Optional[Dict] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Format a standard error response with optional details."""
    response = {
        "success": False,
        "error": True,
        "code": code,
        "message": message,
        "timestamp": utc_now().isoformat(),
    }
    if details:
        response["details"] = details
    if request_id:
        response["request_id"] = request_id
    return response


def format_success_response(data: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    """Format a standard success response."""
    response = {
        "success": True,
        "timestamp": utc_now().isoformat(),
        **data,
    }
    if request_id:
        response["request_id"] = request_id
    return response


def generate_request_id() -> str:
    """Generate a unique request ID for tracing."""
    return f"req_{uuid.uuid4().hex[:16]}"


def get_request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


# =============================================================================
# ERROR MAPPING
# =============================================================================

def linking_error_response(request: Request, exc: LinkingError) -> JSONResponse:
    """Render a LinkingError with the status code its class declares."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}")
    else:
        logger.info(f"{exc.code}: {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content=format_error_response(
            exc.message,
            code=exc.code,
            details=exc.details,
            request_id=get_request_id(request),
        ),
    )
