"""
Break-glass emergency override registry.

An override lets a clinician reach a patient outside their normal department
or specialty for a fixed window (EMERGENCY_OVERRIDE_TTL_HOURS). Every
activation, review, deactivation and expiry is written to the audit trail,
and active grants queue up for compliance review.

Expiry is detected lazily: has_active_override() compares the wall clock to
expires_at on every read and flips is_active when the window has passed,
recording the flip as EMERGENCY_OVERRIDE_EXPIRED.
There is no background sweep.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from ..core import permissions
from ..core.config import settings
from ..core.exceptions import BadRequest, Forbidden, NotFound
from ..models.audit_log import AuditAction
from ..models.base import generate_uuid, utcnow
from ..models.emergency_override import EmergencyOverride
from ..models.user import MedicalPermission, MedicalUser
from .audit_service import AuditLogEntry, MedicalAuditService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmergencyOverrideContext:
    """Returned to the activating caller for immediate use."""
    override_id: str
    user_id: str
    patient_id: str
    reason: str
    timestamp: datetime
    expires_at: datetime


class EmergencyOverrideService:
    def __init__(
        self,
        db: Session,
        audit_service: MedicalAuditService,
        clock: Callable[[], datetime] = utcnow,
        ttl: Optional[timedelta] = None,
        min_reason_length: Optional[int] = None,
    ):
        self.db = db
        self.audit_service = audit_service
        self.clock = clock
        self.ttl = ttl or timedelta(hours=settings.EMERGENCY_OVERRIDE_TTL_HOURS)
        self.min_reason_length = (
            min_reason_length
            if min_reason_length is not None
            else settings.EMERGENCY_OVERRIDE_MIN_REASON_LENGTH
        )

    def activate_override(
        self, user: MedicalUser, patient_id: str, reason: str
    ) -> EmergencyOverrideContext:
        if not permissions.has_permission(user, MedicalPermission.EMERGENCY_OVERRIDE):
            raise Forbidden(
                "User does not have permission to activate emergency overrides",
                resource="emergency_override",
                patient_id=patient_id,
            )

        reason = (reason or "").strip()
        if len(reason) < self.min_reason_length:
            raise BadRequest(
                f"Emergency override reason must be at least {self.min_reason_length} characters",
                resource="emergency_override",
                patient_id=patient_id,
            )

        now = self.clock()
        # At most one active grant per (user, patient): a new activation supersedes the old one
        superseded = self._active_overrides(user.id, patient_id)
        for previous in superseded:
            previous.is_active = False
            previous.deactivated_at = now

        override = EmergencyOverride(
            id=generate_uuid(),
            user_id=user.id,
            staff_id=user.staff_id,
            patient_id=patient_id,
            reason=reason,
            is_active=True,
            created_at=now,
            updated_at=now,
            expires_at=now + self.ttl,
        )
        self.db.add(override)
        self.db.flush()

        # Commits the override together with its audit entry
        self.audit_service.log(AuditLogEntry(
            user_id=user.id,
            staff_id=user.staff_id,
            action=AuditAction.EMERGENCY_OVERRIDE,
            resource="patient",
            resource_id=patient_id,
            patient_id=patient_id,
            department=user.department,
            is_emergency_override=True,
            success=True,
            metadata={
                "reason": reason,
                "override_id": override.id,
                "expires_at": override.expires_at.isoformat(),
                "superseded": [p.id for p in superseded],
            },
            timestamp=now,
        ))

        logger.warning(
            "Emergency override ACTIVATED: staff=%s patient=%s expires=%s",
            user.staff_id, patient_id, override.expires_at.isoformat(),
        )

        return EmergencyOverrideContext(
            override_id=override.id,
            user_id=user.id,
            patient_id=patient_id,
            reason=reason,
            timestamp=override.created_at,
            expires_at=override.expires_at,
        )

    def has_active_override(self, user_id: str, patient_id: str) -> bool:
        override = (
            self.db.query(EmergencyOverride)
            .filter(
                EmergencyOverride.user_id == user_id,
                EmergencyOverride.patient_id == patient_id,
                EmergencyOverride.is_active.is_(True),
            )
            .order_by(EmergencyOverride.created_at.desc())
            .first()
        )
        if override is None:
            return False

        now = self.clock()
        if now > override.expires_at:
            override.is_active = False
            override.deactivated_at = now
            # Commits the flip together with its audit entry
            self.audit_service.log(AuditLogEntry(
                user_id=override.user_id,
                staff_id=override.staff_id,
                action=AuditAction.EMERGENCY_OVERRIDE_EXPIRED,
                resource="emergency_override",
                resource_id=override.id,
                patient_id=patient_id,
                is_emergency_override=True,
                success=True,
                metadata={"expires_at": override.expires_at.isoformat()},
                timestamp=now,
            ))
            logger.info(
                "Emergency override %s expired (staff=%s patient=%s)",
                override.id, override.staff_id, patient_id,
            )
            return False

        return True

    def get_override(self, override_id: str) -> EmergencyOverride:
        override = self.db.query(EmergencyOverride).filter(EmergencyOverride.id == override_id).first()
        if override is None:
            raise NotFound(
                f"Emergency override {override_id} not found",
                resource="emergency_override",
            )
        return override

    def get_pending_reviews(self) -> List[EmergencyOverride]:
        """Compliance review queue: active grants nobody has reviewed yet, newest first."""
        return (
            self.db.query(EmergencyOverride)
            .filter(
                EmergencyOverride.is_active.is_(True),
                EmergencyOverride.reviewed_by.is_(None),
            )
            .order_by(EmergencyOverride.created_at.desc())
            .all()
        )

    def review_override(self, override_id: str, reviewer_id: str, review_notes: str) -> EmergencyOverride:
        """Attach a compliance review. Does not change is_active."""
        override = self.get_override(override_id)
        if override.is_reviewed:
            raise BadRequest(
                f"Emergency override {override_id} has already been reviewed",
                resource="emergency_override",
                patient_id=override.patient_id,
            )

        now = self.clock()
        override.reviewed_by = reviewer_id
        override.reviewed_at = now
        override.review_notes = review_notes
        self.db.flush()

        self.audit_service.log(AuditLogEntry(
            user_id=reviewer_id,
            staff_id=reviewer_id,
            action=AuditAction.EMERGENCY_OVERRIDE_REVIEWED,
            resource="emergency_override",
            resource_id=override_id,
            patient_id=override.patient_id,
            is_emergency_override=False,
            success=True,
            metadata={"original_user_id": override.user_id, "review_notes": review_notes},
            timestamp=now,
        ))
        logger.info("Emergency override %s reviewed by %s", override_id, reviewer_id)
        return override

    def deactivate_override(self, user_id: str, patient_id: str) -> int:
        """Revoke the active grant for a pair before its TTL runs out. Returns how many were revoked."""
        active = self._active_overrides(user_id, patient_id)
        if not active:
            return 0

        now = self.clock()
        for override in active:
            override.is_active = False
            override.deactivated_at = now
        self.db.flush()

        first = active[0]
        self.audit_service.log(AuditLogEntry(
            user_id=user_id,
            staff_id=first.staff_id,
            action=AuditAction.EMERGENCY_OVERRIDE_DEACTIVATED,
            resource="emergency_override",
            resource_id=first.id,
            patient_id=patient_id,
            is_emergency_override=True,
            success=True,
            metadata={"override_ids": [o.id for o in active]},
            timestamp=now,
        ))
        return len(active)

    def _active_overrides(self, user_id: str, patient_id: str) -> List[EmergencyOverride]:
        return (
            self.db.query(EmergencyOverride)
            .filter(
                EmergencyOverride.user_id == user_id,
                EmergencyOverride.patient_id == patient_id,
                EmergencyOverride.is_active.is_(True),
            )
            .all()
        )
