from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from enum import Enum
from datetime import datetime

from models.enrollment import TriggeredBy
from utils.time_utils import utcnow


class LogStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionOutcome(BaseModel):
    action_id: str
    action_type: Optional[str] = None
    status: OutcomeStatus
    executed_at: datetime = Field(default_factory=utcnow)
    attempts: int = 1
    detail: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class ExecutionLogEntry(BaseModel):
    id: str
    automation_id: str
    enrollment_id: str
    entity_id: str
    triggered_by: TriggeredBy = Field(default_factory=TriggeredBy)
    status: LogStatus = LogStatus.RUNNING
    actions_executed: List[ActionOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == LogStatus.RUNNING
