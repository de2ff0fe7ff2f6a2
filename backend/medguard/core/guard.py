"""
Access guard: the decision point for every protected operation.

Each operation declares an AccessRequirements value at route registration.
The guard evaluates it against the resolved principal, fail-fast, and writes
exactly one audit entry per decision before returning or raising. The only
unaudited path is a missing principal, because there is no actor to record.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, MutableMapping, Optional, Tuple

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from . import permissions
from .exceptions import Forbidden, Unauthenticated
from .principal import get_current_medical_user
from ..models.audit_log import AuditAction
from ..models.base import get_db
from ..models.user import (
    MedicalDepartment,
    MedicalPermission,
    MedicalRole,
    MedicalSpecialty,
    MedicalUser,
)
from ..services.audit_service import AuditLogEntry, MedicalAuditService
from ..services.emergency_override import EmergencyOverrideService

logger = logging.getLogger(__name__)

EMERGENCY_CONTEXT_KEY = "emergency_override_context"

DENY_ROLE = "Insufficient role"
DENY_PERMISSIONS = "Insufficient permissions"
DENY_DEPARTMENT = "Department access denied"
DENY_SPECIALTY = "Required specialty not present"


@dataclass(frozen=True)
class AccessRequirements:
    """Declarative, serializable requirement set attached to one operation."""
    roles: Tuple[MedicalRole, ...] = ()
    permissions: Tuple[MedicalPermission, ...] = ()
    departments: Tuple[MedicalDepartment, ...] = ()
    specialties: Tuple[MedicalSpecialty, ...] = ()
    allow_emergency_override: bool = False
    audit_resource: Optional[str] = None

    def __post_init__(self):
        for name in ("roles", "permissions", "departments", "specialties"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "required_roles": [r.value for r in self.roles],
            "required_permissions": [p.value for p in self.permissions],
            "required_departments": [d.value for d in self.departments],
            "required_specialties": [s.value for s in self.specialties],
            "allow_emergency_override": self.allow_emergency_override,
            "audit_resource": self.audit_resource,
        }


@dataclass(frozen=True)
class EmergencyAccessContext:
    user_id: str
    patient_id: str


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    user_id: str
    resource: str
    patient_id: Optional[str]
    is_emergency_override: bool
    audit_log_id: str


class MedicalRbacGuard:
    def __init__(self, audit_service: MedicalAuditService, override_service: EmergencyOverrideService):
        self.audit_service = audit_service
        self.override_service = override_service

    def check(
        self,
        requirements: AccessRequirements,
        user: Optional[MedicalUser],
        patient_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        request_scope: Optional[MutableMapping[str, Any]] = None,
        resource: Optional[str] = None,
    ) -> AccessDecision:
        if user is None:
            raise Unauthenticated("No authenticated medical user found", resource=resource, patient_id=patient_id)

        resource = requirements.audit_resource or resource or "unknown"
        ctx = dict(
            user=user,
            resource=resource,
            patient_id=patient_id,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        if requirements.roles and not any(user.has_role(r) for r in requirements.roles):
            self._deny(reason=DENY_ROLE, **ctx)

        if requirements.permissions and not permissions.has_all_permissions(user, requirements.permissions):
            self._deny(reason=DENY_PERMISSIONS, **ctx)

        if requirements.departments and not any(
            permissions.can_access_department(user, d) for d in requirements.departments
        ):
            if (
                requirements.allow_emergency_override
                and patient_id
                and self.override_service.has_active_override(user.id, patient_id)
            ):
                if request_scope is not None:
                    request_scope[EMERGENCY_CONTEXT_KEY] = EmergencyAccessContext(
                        user_id=user.id, patient_id=patient_id,
                    )
                return self._grant(is_emergency_override=True, **ctx)
            self._deny(reason=DENY_DEPARTMENT, **ctx)

        # Non-doctors already satisfied role and department rules
        if (
            requirements.specialties
            and user.has_role(MedicalRole.DOCTOR)
            and not user.specialties & set(requirements.specialties)
        ):
            self._deny(reason=DENY_SPECIALTY, **ctx)

        return self._grant(is_emergency_override=False, **ctx)

    def _grant(self, user, resource, patient_id, ip_address, user_agent, is_emergency_override) -> AccessDecision:
        record = self.audit_service.log(AuditLogEntry(
            user_id=user.id,
            staff_id=user.staff_id,
            action=AuditAction.READ,
            resource=resource,
            patient_id=patient_id,
            department=user.department,
            is_emergency_override=is_emergency_override,
            ip_address=ip_address,
            user_agent=user_agent,
            success=True,
        ))
        return AccessDecision(
            allowed=True,
            user_id=user.id,
            resource=resource,
            patient_id=patient_id,
            is_emergency_override=is_emergency_override,
            audit_log_id=record.id,
        )

    def _deny(self, user, resource, patient_id, ip_address, user_agent, reason):
        self.audit_service.log(AuditLogEntry(
            user_id=user.id,
            staff_id=user.staff_id,
            action=AuditAction.PERMISSION_DENIED,
            resource=resource,
            patient_id=patient_id,
            department=user.department,
            is_emergency_override=False,
            ip_address=ip_address,
            user_agent=user_agent,
            success=False,
            failure_reason=reason,
        ))
        logger.info(
            "Access denied: staff=%s resource=%s patient=%s reason=%s",
            user.staff_id, resource, patient_id, reason,
        )
        raise Forbidden(reason, resource=resource, patient_id=patient_id)


def build_guard(db: Session) -> MedicalRbacGuard:
    audit_service = MedicalAuditService(db)
    return MedicalRbacGuard(audit_service, EmergencyOverrideService(db, audit_service))


async def get_target_patient_id(request: Request) -> Optional[str]:
    """The patient an operation targets: the route parameter, else `patient_id` in a JSON body."""
    patient_id = request.path_params.get("patient_id")
    if patient_id:
        return patient_id
    if request.method not in ("POST", "PUT", "PATCH"):
        return None
    if not request.headers.get("content-type", "").startswith("application/json"):
        return None
    try:
        body = await request.json()
    except ValueError:
        return None
    value = body.get("patient_id") if isinstance(body, dict) else None
    return value if isinstance(value, str) and value else None


def require_access(requirements: AccessRequirements):
    """
    FastAPI dependency factory. Usage:

        @router.get("/patient/{patient_id}/records")
        def get_records(decision=Depends(require_access(AccessRequirements(...)))):
    """
    def dependency(
        request: Request,
        db: Session = Depends(get_db),
        user: Optional[MedicalUser] = Depends(get_current_medical_user),
        patient_id: Optional[str] = Depends(get_target_patient_id),
    ) -> AccessDecision:
        endpoint = request.scope.get("endpoint")
        scope: Dict[str, Any] = {}
        decision = build_guard(db).check(
            requirements,
            user,
            patient_id=patient_id,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("User-Agent"),
            request_scope=scope,
            resource=getattr(endpoint, "__name__", None),
        )
        request.state.emergency_override_context = scope.get(EMERGENCY_CONTEXT_KEY)
        return decision

    return dependency


def get_emergency_context(request: Request) -> Optional[EmergencyAccessContext]:
    """The break-glass context set by the guard, or None for a normal grant."""
    return getattr(request.state, "emergency_override_context", None)
