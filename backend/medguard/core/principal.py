"""
Principal resolution.
Credentials are verified by the upstream identity layer, which places the
resolved MedicalUser on request.state.medical_user. This module only reads it.
"""
import logging
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from ..models.user import MedicalUser

logger = logging.getLogger(__name__)

HEADER_USER_ID = "X-User-Id"
HEADER_STAFF_ID = "X-Staff-Id"
HEADER_ROLES = "X-User-Roles"
HEADER_DEPARTMENT = "X-User-Department"
HEADER_SPECIALTIES = "X-User-Specialties"


def _split(value: str):
    return [v.strip() for v in value.split(",") if v.strip()]


def principal_from_headers(request: Request) -> Optional[MedicalUser]:
    """Build a principal from gateway-forwarded identity headers, or None if absent or malformed."""
    user_id = request.headers.get(HEADER_USER_ID)
    if not user_id:
        return None
    try:
        return MedicalUser.build(
            id=user_id,
            staff_id=request.headers.get(HEADER_STAFF_ID, user_id),
            roles=_split(request.headers.get(HEADER_ROLES, "")),
            department=request.headers.get(HEADER_DEPARTMENT) or None,
            specialties=_split(request.headers.get(HEADER_SPECIALTIES, "")),
        )
    except ValueError as exc:
        logger.warning("Rejected identity headers for %s: %s", request.url.path, exc)
        return None


class TrustedHeaderPrincipalMiddleware(BaseHTTPMiddleware):
    """Only install behind a gateway that authenticates callers and overwrites these headers."""

    async def dispatch(self, request: Request, call_next):
        if getattr(request.state, "medical_user", None) is None:
            request.state.medical_user = principal_from_headers(request)
        return await call_next(request)


def get_current_medical_user(request: Request) -> Optional[MedicalUser]:
    return getattr(request.state, "medical_user", None)
