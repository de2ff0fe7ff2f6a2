"""
Typed failures raised by the access-control core.
The API layer maps each one to an HTTP status in main.py.
"""
from typing import Optional


class MedicalAccessError(Exception):
    """Base class for every access-control failure."""
    status_code = 500

    def __init__(
        self,
        detail: str,
        resource: Optional[str] = None,
        patient_id: Optional[str] = None,
    ):
        super().__init__(detail)
        self.detail = detail
        self.resource = resource
        self.patient_id = patient_id


class Unauthenticated(MedicalAccessError):
    """No principal was resolved for the call. Never audited: there is no actor."""
    status_code = 401


class Forbidden(MedicalAccessError):
    status_code = 403


class BadRequest(MedicalAccessError):
    status_code = 400


class NotFound(MedicalAccessError):
    status_code = 404


class AuditWriteFailure(MedicalAccessError):
    """
    The audit entry for a decision could not be persisted.
    An unaudited PHI access is treated like an unauthorized one.
    """
    status_code = 500
