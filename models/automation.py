from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List
from enum import Enum
from datetime import datetime

from models.actions import Action
from models.conditions import ConditionGroup
from utils.time_utils import utcnow


class AutomationStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    ARCHIVED = "archived"


class TriggerType(str, Enum):
    FORM_SUBMISSION = "form_submission"
    LANDING_PAGE_VISIT = "landing_page_visit"
    EMAIL_OPENED = "email_opened"
    EMAIL_CLICKED = "email_clicked"
    CONTACT_CREATED = "contact_created"
    CONTACT_UPDATED = "contact_updated"
    TAG_ADDED = "tag_added"
    DEAL_STAGE_CHANGED = "deal_stage_changed"
    DEAL_WON = "deal_won"
    DATE_BASED = "date_based"
    WEBHOOK = "webhook"


TIME_BASED_TRIGGERS = {TriggerType.DATE_BASED}


class FailurePolicy(str, Enum):
    HALT = "halt"
    SKIP = "skip"


class TriggerSchedule(BaseModel):
    type: str = Field("once", pattern="^(once|recurring)$")
    date: Optional[datetime] = None
    time: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    day_of_week: List[int] = Field(default_factory=list)
    day_of_month: List[int] = Field(default_factory=list)


class TriggerConfig(BaseModel):
    form_id: Optional[str] = None
    landing_page_id: Optional[str] = None
    campaign_id: Optional[str] = None
    tag_name: Optional[str] = None
    stage_id: Optional[str] = None
    webhook_key: Optional[str] = None
    schedule: Optional[TriggerSchedule] = None


class Trigger(BaseModel):
    type: TriggerType
    config: TriggerConfig = Field(default_factory=TriggerConfig)
    filters: Optional[ConditionGroup] = None


class AutomationSettings(BaseModel):
    allow_reentry: bool = False
    reentry_delay_hours: Optional[float] = Field(None, ge=0)
    max_executions: Optional[int] = Field(None, ge=1)
    timezone: str = "UTC"
    enabled_days: List[int] = Field(default_factory=list)
    active_hours_start: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    active_hours_end: Optional[str] = Field(None, pattern=r"^\d{2}:\d{2}$")
    failure_policy: FailurePolicy = FailurePolicy.HALT
    hop_budget: Optional[int] = Field(None, ge=1)
    action_timeout_seconds: Optional[float] = Field(None, gt=0)
    max_action_attempts: Optional[int] = Field(None, ge=1)
    webhook_secret: Optional[str] = None


class AutomationStats(BaseModel):
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    cancelled_executions: int = 0
    rejected_enrollments: Dict[str, int] = Field(default_factory=dict)
    contacts_enrolled: int = 0
    last_executed_at: Optional[datetime] = None
    last_error: Optional[str] = None


class Automation(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    status: AutomationStatus = AutomationStatus.DRAFT

    trigger: Trigger
    actions: List[Action] = Field(default_factory=list)
    entry_action_id: Optional[str] = None
    settings: AutomationSettings = Field(default_factory=AutomationSettings)

    created_by: Optional[str] = None
    version: int = 1
    published_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def resolve_entry_action_id(self) -> Optional[str]:
        if self.entry_action_id:
            return self.entry_action_id
        return self.actions[0].id if self.actions else None
