"""
Role-based permission matrix and department access policies.
Both tables are built once at import and are read-only for the life of the process.
"""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional

from ..models.user import (
    MedicalDepartment,
    MedicalPermission,
    MedicalRole,
    MedicalSpecialty,
    MedicalUser,
)

P = MedicalPermission


@dataclass(frozen=True)
class DepartmentAccessPolicy:
    department: MedicalDepartment
    allowed_roles: FrozenSet[MedicalRole]
    # Only constrains doctors
    required_specialties: FrozenSet[MedicalSpecialty] = field(default_factory=frozenset)


# Role permission matrix
ROLE_PERMISSIONS: Mapping[MedicalRole, FrozenSet[MedicalPermission]] = MappingProxyType({
    MedicalRole.ADMIN: frozenset({
        P.READ_PATIENT_BASIC,
        P.READ_PATIENT_FULL,
        P.WRITE_PATIENT_DATA,
        P.DELETE_PATIENT_DATA,
        P.READ_MEDICAL_RECORDS,
        P.WRITE_MEDICAL_RECORDS,
        P.READ_LAB_RESULTS,
        P.WRITE_LAB_RESULTS,
        P.READ_PRESCRIPTIONS,
        P.WRITE_PRESCRIPTIONS,
        P.ACCESS_ANY_DEPARTMENT,
        P.MANAGE_STAFF,
        P.VIEW_AUDIT_LOGS,
        P.MANAGE_SYSTEM,
        P.EMERGENCY_OVERRIDE,
    }),
    MedicalRole.DOCTOR: frozenset({
        P.READ_PATIENT_BASIC,
        P.READ_PATIENT_FULL,
        P.WRITE_PATIENT_DATA,
        P.READ_MEDICAL_RECORDS,
        P.WRITE_MEDICAL_RECORDS,
        P.READ_LAB_RESULTS,
        P.READ_PRESCRIPTIONS,
        P.WRITE_PRESCRIPTIONS,
        P.ACCESS_OWN_DEPARTMENT,
        P.EMERGENCY_OVERRIDE,
    }),
    MedicalRole.NURSE: frozenset({
        P.READ_PATIENT_BASIC,
        P.READ_PATIENT_FULL,
        P.WRITE_PATIENT_DATA,
        P.READ_MEDICAL_RECORDS,
        P.WRITE_MEDICAL_RECORDS,
        P.READ_LAB_RESULTS,
        P.READ_PRESCRIPTIONS,
        P.ACCESS_OWN_DEPARTMENT,
        # Nurse does NOT have WRITE_PRESCRIPTIONS or EMERGENCY_OVERRIDE
    }),
    MedicalRole.PHARMACIST: frozenset({
        P.READ_PATIENT_BASIC,
        P.READ_PRESCRIPTIONS,
        P.WRITE_PRESCRIPTIONS,
        P.DISPENSE_MEDICATIONS,
        P.ACCESS_OWN_DEPARTMENT,
    }),
    MedicalRole.LAB_TECHNICIAN: frozenset({
        P.READ_PATIENT_BASIC,
        P.READ_LAB_RESULTS,
        P.WRITE_LAB_RESULTS,
        P.ACCESS_OWN_DEPARTMENT,
    }),
})

_ALL_ROLES = frozenset(MedicalRole)
_CLINICAL_ROLES = frozenset({MedicalRole.DOCTOR, MedicalRole.NURSE, MedicalRole.ADMIN})


def _policy(department, roles, specialties=()) -> DepartmentAccessPolicy:
    return DepartmentAccessPolicy(
        department=department,
        allowed_roles=frozenset(roles),
        required_specialties=frozenset(specialties),
    )


# Departments missing from this table are denied (fail-closed)
DEPARTMENT_POLICIES: Mapping[MedicalDepartment, DepartmentAccessPolicy] = MappingProxyType({
    p.department: p for p in (
        _policy(MedicalDepartment.CARDIOLOGY, _CLINICAL_ROLES, [MedicalSpecialty.CARDIOLOGIST]),
        _policy(MedicalDepartment.SURGERY, _CLINICAL_ROLES, [MedicalSpecialty.SURGEON]),
        _policy(MedicalDepartment.EMERGENCY, _ALL_ROLES),
        _policy(
            MedicalDepartment.PHARMACY,
            [MedicalRole.PHARMACIST, MedicalRole.ADMIN, MedicalRole.DOCTOR],
        ),
        _policy(
            MedicalDepartment.LABORATORY,
            [MedicalRole.LAB_TECHNICIAN, MedicalRole.ADMIN, MedicalRole.DOCTOR],
        ),
        _policy(MedicalDepartment.PEDIATRICS, _CLINICAL_ROLES, [MedicalSpecialty.PEDIATRICIAN]),
        _policy(MedicalDepartment.ONCOLOGY, _CLINICAL_ROLES, [MedicalSpecialty.ONCOLOGIST]),
        _policy(MedicalDepartment.NEUROLOGY, _CLINICAL_ROLES, [MedicalSpecialty.NEUROLOGIST]),
        _policy(
            MedicalDepartment.RADIOLOGY,
            [MedicalRole.DOCTOR, MedicalRole.ADMIN],
            [MedicalSpecialty.RADIOLOGIST],
        ),
        _policy(MedicalDepartment.GENERAL, _ALL_ROLES),
    )
})


def get_role_permissions(role: MedicalRole) -> FrozenSet[MedicalPermission]:
    return ROLE_PERMISSIONS.get(role, frozenset())


def get_permissions_for_roles(roles: Iterable[MedicalRole]) -> FrozenSet[MedicalPermission]:
    """Union of the permission sets of every role. Unknown roles contribute nothing."""
    permissions = set()
    for role in roles:
        permissions |= get_role_permissions(role)
    return frozenset(permissions)


def has_permission(user: MedicalUser, permission: MedicalPermission) -> bool:
    """Check if any of the user's roles grants a specific permission."""
    return permission in get_permissions_for_roles(user.roles)


def has_all_permissions(user: MedicalUser, permissions: Iterable[MedicalPermission]) -> bool:
    granted = get_permissions_for_roles(user.roles)
    return all(p in granted for p in permissions)


def get_department_policy(department: MedicalDepartment) -> Optional[DepartmentAccessPolicy]:
    return DEPARTMENT_POLICIES.get(department)


def can_access_department(user: MedicalUser, target: MedicalDepartment) -> bool:
    """
    Decide whether the user may touch resources owned by `target`.

    Order matters: the admin bypass is checked first, the emergency department
    is open to every care-capable role, and unknown departments are denied.
    Specialty requirements only constrain doctors, and a doctor assigned to
    the target department is never blocked by a missing specialty tag.
    """
    if has_permission(user, P.ACCESS_ANY_DEPARTMENT):
        return True

    if target == MedicalDepartment.EMERGENCY:
        emergency = DEPARTMENT_POLICIES[MedicalDepartment.EMERGENCY]
        return bool(user.roles & emergency.allowed_roles)

    policy = get_department_policy(target)
    if policy is None:
        return False

    if not user.roles & policy.allowed_roles:
        return False

    if policy.required_specialties and user.has_role(MedicalRole.DOCTOR):
        has_specialty = bool(user.specialties & policy.required_specialties)
        return has_specialty or user.department == target

    return True
