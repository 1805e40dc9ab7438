from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime

from utils.time_utils import utcnow


class EnrollmentStatus(str, Enum):
    PENDING = "pending"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


LIVE_STATUSES = {EnrollmentStatus.PENDING, EnrollmentStatus.WAITING}


class RejectionReason(str, Enum):
    AUTOMATION_NOT_FOUND = "automation_not_found"
    AUTOMATION_NOT_ACTIVE = "automation_not_active"
    ALREADY_ENROLLED = "already_enrolled"
    REENTRY_SUPPRESSED = "reentry_suppressed"
    MAX_EXECUTIONS_REACHED = "max_executions_reached"


class TriggeredBy(BaseModel):
    type: str = "contact"  # contact | deal | system | webhook
    id: Optional[str] = None
    event_type: Optional[str] = None


class Enrollment(BaseModel):
    id: str
    automation_id: str
    entity_id: str
    entity_type: str = "contact"
    triggered_by: TriggeredBy = Field(default_factory=TriggeredBy)
    status: EnrollmentStatus = EnrollmentStatus.PENDING

    current_action_id: Optional[str] = None
    resume_at: Optional[datetime] = None
    not_before: Optional[datetime] = None
    entity_snapshot: Dict[str, Any] = Field(default_factory=dict)
    # metadata of the triggering event, exposed to conditions as `data.`
    trigger_data: Dict[str, Any] = Field(default_factory=dict)
    run_log_id: Optional[str] = None

    enrolled_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    termination_reason: Optional[str] = None

    # single-writer lease
    version: int = 0
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    def due_at(self) -> Optional[datetime]:
        """Earliest instant the enrollment may advance, or None if it is ready now."""
        candidates = [t for t in (self.resume_at, self.not_before) if t is not None]
        return max(candidates) if candidates else None


class EnrollmentResult(BaseModel):
    enrollment: Optional[Enrollment] = None
    rejected_reason: Optional[RejectionReason] = None

    @property
    def accepted(self) -> bool:
        return self.enrollment is not None
