"""Write-only audit trail for appointment lifecycle changes."""

from datetime import datetime
from functools import lru_cache
from uuid import UUID

import structlog


class AuditSink:
    """Emit audit entries on a dedicated structured logger.

    Recording is fire-and-forget: failures are reported on the application
    logger and never reach the caller.
    """

    def __init__(self, logger_name: str = "audit"):
        """Initialize sink with the audit logger name."""
        self._audit = structlog.get_logger(logger_name)
        self._logger = structlog.get_logger(__name__)

    def record_state_change(
        self,
        appointment_id: UUID,
        previous_state: str,
        new_state: str,
        actor_id: UUID | None,
        actor_role: str | None,
    ) -> None:
        """Record an appointment state transition."""
        try:
            self._audit.info(
                "appointment_state_changed",
                appointment_id=str(appointment_id),
                previous_state=previous_state,
                new_state=new_state,
                actor_id=str(actor_id) if actor_id else None,
                actor_role=actor_role,
            )
        except Exception as e:
            self._logger.warning("audit_record_failed", action="state_change", error=str(e))

    def record_reschedule(
        self,
        appointment_id: UUID,
        new_date: datetime,
        motive: str | None,
        requested_by: str,
        actor_id: UUID | None,
    ) -> None:
        """Record an appointment reschedule."""
        try:
            self._audit.info(
                "appointment_rescheduled",
                appointment_id=str(appointment_id),
                new_date=new_date.isoformat(),
                motive=motive,
                requested_by=requested_by,
                actor_id=str(actor_id) if actor_id else None,
            )
        except Exception as e:
            self._logger.warning("audit_record_failed", action="reschedule", error=str(e))


@lru_cache
def get_audit_sink() -> AuditSink:
    """Get the process-wide audit sink."""
    return AuditSink()
