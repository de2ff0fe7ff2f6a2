"""
Audit sink for access decisions and break-glass lifecycle events.

Writes are synchronous and must succeed: a failed write is logged and
re-raised as AuditWriteFailure, never swallowed, because an access that
cannot be audited is treated as a failed access.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import AuditWriteFailure
from ..models.audit_log import AuditAction, MedicalAuditLog
from ..models.base import generate_uuid, utcnow
from ..models.user import MedicalDepartment

logger = logging.getLogger(__name__)


class AuditLogEntry(BaseModel):
    """Write-side value for one audit record."""
    model_config = ConfigDict(use_enum_values=True)

    user_id: str
    staff_id: str
    action: AuditAction
    resource: str
    resource_id: Optional[str] = None
    patient_id: Optional[str] = None
    department: Optional[MedicalDepartment] = None
    is_emergency_override: bool = False
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    success: bool = True
    failure_reason: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _failure_reason_iff_denied(self):
        if self.success and self.failure_reason:
            raise ValueError("failure_reason is only allowed on unsuccessful entries")
        if not self.success and not (self.failure_reason or "").strip():
            raise ValueError("unsuccessful entries must carry a failure_reason")
        return self


class AuditLogQuery(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: Optional[str] = None
    patient_id: Optional[str] = None
    department: Optional[MedicalDepartment] = None
    action: Optional[AuditAction] = None
    emergency_only: bool = False
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    # Clamped by the service, so oversized values are accepted here
    limit: Optional[int] = Field(default=None, ge=1)

    @field_validator("start_date", "end_date")
    @classmethod
    def _as_naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # Stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


@dataclass
class AuditLogPage:
    data: List[MedicalAuditLog]
    total: int
    page: int
    limit: int


class MedicalAuditService:
    def __init__(self, db: Session):
        self.db = db

    def log(self, entry: AuditLogEntry) -> MedicalAuditLog:
        """
        Persist an entry and commit the current transaction.

        Anything the caller added to the session before this call (e.g. an
        override record) commits together with the entry, or not at all.
        """
        record = MedicalAuditLog(
            id=generate_uuid(),
            user_id=entry.user_id,
            staff_id=entry.staff_id,
            action=entry.action,
            resource=entry.resource,
            resource_id=entry.resource_id,
            patient_id=entry.patient_id,
            department=entry.department,
            is_emergency_override=entry.is_emergency_override,
            ip_address=entry.ip_address,
            user_agent=entry.user_agent,
            extra_metadata=entry.metadata or None,
            success=entry.success,
            failure_reason=entry.failure_reason,
            timestamp=entry.timestamp,
        )
        try:
            self.db.add(record)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Audit log write failed: action=%s resource=%s user=%s patient=%s: %s",
                entry.action, entry.resource, entry.user_id, entry.patient_id, exc,
            )
            raise AuditWriteFailure(
                "Failed to write audit log",
                resource=entry.resource,
                patient_id=entry.patient_id,
            ) from exc

        if entry.is_emergency_override:
            logger.warning(
                "EMERGENCY OVERRIDE: user=%s staff=%s patient=%s action=%s",
                entry.user_id, entry.staff_id, entry.patient_id, entry.action,
            )
        return record

    def log_access_denied(
        self,
        user_id: str,
        staff_id: str,
        resource: str,
        reason: str,
        ip_address: Optional[str] = None,
    ) -> MedicalAuditLog:
        return self.log(AuditLogEntry(
            user_id=user_id,
            staff_id=staff_id,
            action=AuditAction.PERMISSION_DENIED,
            resource=resource,
            success=False,
            failure_reason=reason,
            ip_address=ip_address,
        ))

    def query_logs(self, query: AuditLogQuery) -> AuditLogPage:
        """Searchable audit log, newest first. Page size never exceeds AUDIT_MAX_PAGE_SIZE."""
        q = self.db.query(MedicalAuditLog)
        if query.user_id:
            q = q.filter(MedicalAuditLog.user_id == query.user_id)
        if query.patient_id:
            q = q.filter(MedicalAuditLog.patient_id == query.patient_id)
        if query.department:
            q = q.filter(MedicalAuditLog.department == query.department)
        if query.action:
            q = q.filter(MedicalAuditLog.action == query.action)
        if query.emergency_only:
            q = q.filter(MedicalAuditLog.is_emergency_override.is_(True))
        if query.start_date:
            q = q.filter(MedicalAuditLog.timestamp >= query.start_date)
        if query.end_date:
            q = q.filter(MedicalAuditLog.timestamp <= query.end_date)

        limit = min(query.limit or settings.AUDIT_DEFAULT_PAGE_SIZE, settings.AUDIT_MAX_PAGE_SIZE)
        total = q.count()
        data = (
            q.order_by(MedicalAuditLog.timestamp.desc())
            .offset((query.page - 1) * limit)
            .limit(limit)
            .all()
        )
        return AuditLogPage(data=data, total=total, page=query.page, limit=limit)

    def get_emergency_override_logs(self) -> List[MedicalAuditLog]:
        return (
            self.db.query(MedicalAuditLog)
            .filter(MedicalAuditLog.is_emergency_override.is_(True))
            .order_by(MedicalAuditLog.timestamp.desc())
            .all()
        )

    def get_patient_access_history(self, patient_id: str) -> List[MedicalAuditLog]:
        """Every entry that touched a patient, newest first."""
        return (
            self.db.query(MedicalAuditLog)
            .filter(MedicalAuditLog.patient_id == patient_id)
            .order_by(MedicalAuditLog.timestamp.desc())
            .all()
        )
