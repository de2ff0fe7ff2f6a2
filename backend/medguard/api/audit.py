"""Audit log viewer: searchable trail, break-glass stream, per-patient history."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from ..core.guard import AccessRequirements, require_access
from ..models.audit_log import AuditAction
from ..models.base import get_db
from ..models.user import MedicalDepartment, MedicalPermission, MedicalRole
from ..services.audit_service import AuditLogQuery, MedicalAuditService

router = APIRouter(prefix="/medical-rbac/audit-logs", tags=["audit"])

VIEW_AUDIT_LOGS = dict(
    roles=(MedicalRole.ADMIN,),
    permissions=(MedicalPermission.VIEW_AUDIT_LOGS,),
)


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    staff_id: str
    action: str
    resource: str
    resource_id: Optional[str]
    patient_id: Optional[str]
    department: Optional[str]
    is_emergency_override: bool
    ip_address: Optional[str]
    user_agent: Optional[str]
    extra_metadata: Optional[Dict[str, Any]]
    success: bool
    failure_reason: Optional[str]
    timestamp: datetime


class AuditLogPageResponse(BaseModel):
    data: List[AuditLogResponse]
    total: int
    page: int
    limit: int


@router.get("", response_model=AuditLogPageResponse)
def get_audit_logs(
    user_id: Optional[str] = Query(None, description="Filter by user ID"),
    patient_id: Optional[str] = Query(None, description="Filter by patient ID"),
    department: Optional[MedicalDepartment] = Query(None, description="Filter by department"),
    action: Optional[AuditAction] = Query(None, description="Filter by action type"),
    emergency_only: bool = Query(False, description="Only break-glass entries"),
    start_date: Optional[datetime] = Query(None, description="Filter records at or after this datetime"),
    end_date: Optional[datetime] = Query(None, description="Filter records at or before this datetime"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, description="Page size, capped at 100"),
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessRequirements(audit_resource="audit_logs", **VIEW_AUDIT_LOGS))),
):
    """Searchable audit log, admin only. Filterable by user, patient, department, action and date range."""
    query = AuditLogQuery(
        user_id=user_id,
        patient_id=patient_id,
        department=department,
        action=action,
        emergency_only=emergency_only,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    result = MedicalAuditService(db).query_logs(query)
    return AuditLogPageResponse(
        data=[AuditLogResponse.model_validate(r) for r in result.data],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.get("/emergency", response_model=List[AuditLogResponse])
def get_emergency_audit_logs(
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessRequirements(audit_resource="emergency_audit_logs", **VIEW_AUDIT_LOGS))),
):
    return MedicalAuditService(db).get_emergency_override_logs()


@router.get("/patient/{patient_id}", response_model=List[AuditLogResponse])
def get_patient_audit_logs(
    patient_id: str,
    db: Session = Depends(get_db),
    _access=Depends(require_access(AccessRequirements(
        roles=(MedicalRole.DOCTOR, MedicalRole.ADMIN),
        permissions=(MedicalPermission.READ_PATIENT_FULL,),
        audit_resource="patient_audit_logs",
    ))),
):
    """Who touched this patient, newest first."""
    return MedicalAuditService(db).get_patient_access_history(patient_id)
