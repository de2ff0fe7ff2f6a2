from enum import Enum

from sqlalchemy import Column, String, Boolean, Text, JSON, DateTime

from .base import Base, generate_uuid, utcnow


class AuditAction(str, Enum):
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    EMERGENCY_OVERRIDE = "EMERGENCY_OVERRIDE"
    EMERGENCY_OVERRIDE_REVIEWED = "EMERGENCY_OVERRIDE_REVIEWED"
    EMERGENCY_OVERRIDE_DEACTIVATED = "EMERGENCY_OVERRIDE_DEACTIVATED"
    EMERGENCY_OVERRIDE_EXPIRED = "EMERGENCY_OVERRIDE_EXPIRED"


class MedicalAuditLog(Base):
    """
    HIPAA-compliant audit trail for every access decision and break-glass transition.
    Rows are append-only: nothing in the application updates or deletes them.
    """
    __tablename__ = "medical_audit_logs"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    staff_id = Column(String(100), nullable=False)
    action = Column(String(50), nullable=False, index=True)
    resource = Column(String(100), nullable=False)
    resource_id = Column(String, nullable=True)
    patient_id = Column(String, nullable=True, index=True)
    department = Column(String(50), nullable=True, index=True)
    is_emergency_override = Column(Boolean, nullable=False, default=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    # "metadata" is reserved on declarative models
    extra_metadata = Column("metadata", JSON, nullable=True)
    success = Column(Boolean, nullable=False)
    failure_reason = Column(Text, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
