"""Break-glass endpoints: activate, review queue, review, early deactivation."""
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..core.guard import AccessRequirements, require_access
from ..core.principal import get_current_medical_user
from ..models.base import get_db
from ..models.user import MedicalPermission, MedicalRole
from ..services.audit_service import MedicalAuditService
from ..services.emergency_override import EmergencyOverrideService

router = APIRouter(prefix="/medical-rbac/emergency-override", tags=["emergency-override"])


class EmergencyOverrideRequest(BaseModel):
    patient_id: str
    # Length is enforced by the service so a short reason is a 400, not a 422
    reason: str


class ReviewOverrideRequest(BaseModel):
    override_id: str
    review_notes: str


class DeactivateOverrideRequest(BaseModel):
    patient_id: str


class EmergencyOverrideContextResponse(BaseModel):
    override_id: str
    user_id: str
    patient_id: str
    reason: str
    timestamp: datetime
    expires_at: datetime


class EmergencyOverrideResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    staff_id: str
    patient_id: str
    reason: str
    created_at: datetime
    expires_at: datetime
    is_active: bool
    reviewed_by: Optional[str]
    reviewed_at: Optional[datetime]
    review_notes: Optional[str]


def _override_service(db: Session) -> EmergencyOverrideService:
    return EmergencyOverrideService(db, MedicalAuditService(db))


@router.post(
    "",
    response_model=EmergencyOverrideContextResponse,
    status_code=status.HTTP_201_CREATED,
)
def activate_emergency_override(
    req: EmergencyOverrideRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_medical_user),
    _access=Depends(require_access(AccessRequirements(
        roles=(MedicalRole.DOCTOR, MedicalRole.ADMIN),
        permissions=(MedicalPermission.EMERGENCY_OVERRIDE,),
        audit_resource="emergency_override",
    ))),
):
    """Open a time-boxed break-glass grant for one patient. Requires a substantive reason."""
    ctx = _override_service(db).activate_override(user, req.patient_id, req.reason)
    return EmergencyOverrideContextResponse(**asdict(ctx))


@router.get("/pending", response_model=List[EmergencyOverrideResponse])
def get_pending_overrides(
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessRequirements(
        roles=(MedicalRole.ADMIN,),
        permissions=(MedicalPermission.VIEW_AUDIT_LOGS,),
        audit_resource="emergency_override_pending",
    ))),
):
    """Compliance review queue, newest first."""
    return _override_service(db).get_pending_reviews()


@router.post("/review", response_model=EmergencyOverrideResponse)
def review_override(
    req: ReviewOverrideRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_medical_user),
    _access=Depends(require_access(AccessRequirements(
        roles=(MedicalRole.ADMIN,),
        permissions=(MedicalPermission.MANAGE_SYSTEM,),
        audit_resource="emergency_override_review",
    ))),
):
    return _override_service(db).review_override(req.override_id, user.id, req.review_notes)


@router.post("/deactivate")
def deactivate_override(
    req: DeactivateOverrideRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_medical_user),
    _access=Depends(require_access(AccessRequirements(
        roles=(MedicalRole.DOCTOR, MedicalRole.ADMIN),
        permissions=(MedicalPermission.EMERGENCY_OVERRIDE,),
        audit_resource="emergency_override_deactivate",
    ))),
):
    """End the caller's own grant early, once the clinical need is over."""
    count = _override_service(db).deactivate_override(user.id, req.patient_id)
    return {"deactivated": count}
