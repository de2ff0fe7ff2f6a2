"""
Medical staff identity as seen by the access-control core.
Users and their role/department/specialty assignments are owned by the
external identity system; this module only describes them.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, Iterable, Optional


class MedicalRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    NURSE = "nurse"
    PHARMACIST = "pharmacist"
    LAB_TECHNICIAN = "lab_technician"


class MedicalPermission(str, Enum):
    READ_PATIENT_BASIC = "read_patient_basic"
    READ_PATIENT_FULL = "read_patient_full"
    WRITE_PATIENT_DATA = "write_patient_data"
    DELETE_PATIENT_DATA = "delete_patient_data"
    READ_MEDICAL_RECORDS = "read_medical_records"
    WRITE_MEDICAL_RECORDS = "write_medical_records"
    READ_LAB_RESULTS = "read_lab_results"
    WRITE_LAB_RESULTS = "write_lab_results"
    READ_PRESCRIPTIONS = "read_prescriptions"
    WRITE_PRESCRIPTIONS = "write_prescriptions"
    DISPENSE_MEDICATIONS = "dispense_medications"
    ACCESS_OWN_DEPARTMENT = "access_own_department"
    ACCESS_ANY_DEPARTMENT = "access_any_department"
    MANAGE_STAFF = "manage_staff"
    VIEW_AUDIT_LOGS = "view_audit_logs"
    MANAGE_SYSTEM = "manage_system"
    EMERGENCY_OVERRIDE = "emergency_override"


class MedicalDepartment(str, Enum):
    EMERGENCY = "emergency"
    GENERAL = "general"
    CARDIOLOGY = "cardiology"
    SURGERY = "surgery"
    PEDIATRICS = "pediatrics"
    ONCOLOGY = "oncology"
    NEUROLOGY = "neurology"
    RADIOLOGY = "radiology"
    PHARMACY = "pharmacy"
    LABORATORY = "laboratory"
    # No policy configured yet: reachable only with ACCESS_ANY_DEPARTMENT
    ICU = "icu"
    PSYCHIATRY = "psychiatry"


class MedicalSpecialty(str, Enum):
    GENERAL_PRACTITIONER = "general_practitioner"
    CARDIOLOGIST = "cardiologist"
    SURGEON = "surgeon"
    PEDIATRICIAN = "pediatrician"
    ONCOLOGIST = "oncologist"
    NEUROLOGIST = "neurologist"
    RADIOLOGIST = "radiologist"


@dataclass(frozen=True)
class MedicalUser:
    """The resolved principal for one call."""
    id: str
    staff_id: str
    roles: FrozenSet[MedicalRole] = field(default_factory=frozenset)
    department: Optional[MedicalDepartment] = None
    specialties: FrozenSet[MedicalSpecialty] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "roles", frozenset(self.roles))
        object.__setattr__(self, "specialties", frozenset(self.specialties))

    @classmethod
    def build(
        cls,
        id: str,
        staff_id: str,
        roles: Iterable[str] = (),
        department: Optional[str] = None,
        specialties: Iterable[str] = (),
    ) -> "MedicalUser":
        """Build a principal from raw tag values, e.g. claims forwarded by a gateway."""
        return cls(
            id=id,
            staff_id=staff_id,
            roles=frozenset(MedicalRole(r) for r in roles),
            department=MedicalDepartment(department) if department else None,
            specialties=frozenset(MedicalSpecialty(s) for s in specialties),
        )

    def has_role(self, role: MedicalRole) -> bool:
        return role in self.roles
