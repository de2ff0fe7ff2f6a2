"""
Protected patient access endpoints.
Clinical data is served by other services; these routes only enforce and
record the access decision and report how access was granted.
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from ..core import permissions
from ..core.guard import (
    AccessDecision,
    AccessRequirements,
    get_emergency_context,
    require_access,
)
from ..core.principal import get_current_medical_user
from ..models.user import MedicalDepartment, MedicalPermission

router = APIRouter(prefix="/medical-rbac", tags=["patients"])


class PatientAccessResponse(BaseModel):
    patient_id: str
    resource: str
    accessed_by: str
    emergency_override: bool
    audit_log_id: str


class MyPermissionsResponse(BaseModel):
    roles: List[str]
    department: Optional[str]
    specialties: List[str]
    permissions: List[str]


def _access_response(patient_id: str, request: Request, user, decision: AccessDecision) -> PatientAccessResponse:
    emergency = get_emergency_context(request)
    return PatientAccessResponse(
        patient_id=patient_id,
        resource=decision.resource,
        accessed_by=user.staff_id,
        emergency_override=emergency is not None,
        audit_log_id=decision.audit_log_id,
    )


@router.get("/patient/{patient_id}/records", response_model=PatientAccessResponse)
def get_patient_records(
    patient_id: str,
    request: Request,
    user=Depends(get_current_medical_user),
    decision: AccessDecision = Depends(require_access(AccessRequirements(
        permissions=(MedicalPermission.READ_MEDICAL_RECORDS,),
        departments=(MedicalDepartment.GENERAL,),
        allow_emergency_override=True,
        audit_resource="medical_records",
    ))),
):
    return _access_response(patient_id, request, user, decision)


@router.get("/patient/{patient_id}/lab-results", response_model=PatientAccessResponse)
def get_lab_results(
    patient_id: str,
    request: Request,
    user=Depends(get_current_medical_user),
    decision: AccessDecision = Depends(require_access(AccessRequirements(
        permissions=(MedicalPermission.READ_LAB_RESULTS,),
        departments=(MedicalDepartment.LABORATORY, MedicalDepartment.GENERAL),
        allow_emergency_override=True,
        audit_resource="lab_results",
    ))),
):
    return _access_response(patient_id, request, user, decision)


@router.get("/patient/{patient_id}/prescriptions", response_model=PatientAccessResponse)
def get_prescriptions(
    patient_id: str,
    request: Request,
    user=Depends(get_current_medical_user),
    decision: AccessDecision = Depends(require_access(AccessRequirements(
        permissions=(MedicalPermission.READ_PRESCRIPTIONS,),
        departments=(MedicalDepartment.PHARMACY, MedicalDepartment.GENERAL),
        allow_emergency_override=True,
        audit_resource="prescriptions",
    ))),
):
    return _access_response(patient_id, request, user, decision)


@router.get("/patient/{patient_id}/surgical-notes", response_model=PatientAccessResponse)
def get_surgical_notes(
    patient_id: str,
    request: Request,
    user=Depends(get_current_medical_user),
    decision: AccessDecision = Depends(require_access(AccessRequirements(
        permissions=(MedicalPermission.READ_MEDICAL_RECORDS,),
        departments=(MedicalDepartment.SURGERY,),
        allow_emergency_override=True,
        audit_resource="surgical_notes",
    ))),
):
    return _access_response(patient_id, request, user, decision)


@router.get("/patient/{patient_id}/imaging", response_model=PatientAccessResponse)
def get_imaging_reports(
    patient_id: str,
    request: Request,
    user=Depends(get_current_medical_user),
    decision: AccessDecision = Depends(require_access(AccessRequirements(
        permissions=(MedicalPermission.READ_MEDICAL_RECORDS,),
        departments=(MedicalDepartment.RADIOLOGY,),
        allow_emergency_override=True,
        audit_resource="imaging_reports",
    ))),
):
    return _access_response(patient_id, request, user, decision)


@router.get("/my-permissions", response_model=MyPermissionsResponse)
def get_my_permissions(
    user=Depends(get_current_medical_user),
    _access=Depends(require_access(AccessRequirements(audit_resource="permissions_introspection"))),
):
    return MyPermissionsResponse(
        roles=sorted(r.value for r in user.roles),
        department=user.department.value if user.department else None,
        specialties=sorted(s.value for s in user.specialties),
        permissions=sorted(p.value for p in permissions.get_permissions_for_roles(user.roles)),
    )
