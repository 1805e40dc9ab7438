from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from datetime import datetime

from models.automation import TriggerType
from utils.time_utils import utcnow


class TriggerEvent(BaseModel):
    type: TriggerType
    entity_id: Optional[str] = None
    entity_type: str = "contact"
    entity_snapshot: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    event_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)


class IngestionResult(BaseModel):
    automation_id: str
    status: str  # enrolled | skipped | error
    reason: Optional[str] = None
    enrollment_id: Optional[str] = None
    run_status: Optional[str] = None


class IngestionReport(BaseModel):
    enrolled: int = 0
    skipped: int = 0
    duplicate: bool = False
    results: List[IngestionResult] = Field(default_factory=list)
