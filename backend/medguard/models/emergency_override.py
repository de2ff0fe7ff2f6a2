from sqlalchemy import Column, String, Boolean, Text, DateTime

from .base import Base, TimestampMixin, generate_uuid


class EmergencyOverride(Base, TimestampMixin):
    """
    A break-glass grant for one (user, patient) pair.

    expires_at is fixed at creation. is_active goes false on explicit
    deactivation or when a read notices the grant has expired, so it can lag
    true expiry until the next has_active_override() call.
    Records are kept forever for compliance review.
    """
    __tablename__ = "emergency_overrides"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String(100), nullable=False, index=True)
    staff_id = Column(String(100), nullable=False)
    patient_id = Column(String, nullable=False, index=True)
    reason = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    deactivated_at = Column(DateTime, nullable=True)

    # After-the-fact compliance review, set at most once
    reviewed_by = Column(String(100), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)

    @property
    def is_reviewed(self) -> bool:
        return self.reviewed_by is not None
