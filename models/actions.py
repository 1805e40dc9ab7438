from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Dict, Any, List, Literal, Union, Annotated
from enum import Enum
from datetime import timedelta

from models.conditions import ConditionGroup


class ActionType(str, Enum):
    SEND_EMAIL = "send_email"
    SEND_WHATSAPP = "send_whatsapp"
    ADD_TAG = "add_tag"
    REMOVE_TAG = "remove_tag"
    UPDATE_CONTACT = "update_contact"
    CREATE_DEAL = "create_deal"
    UPDATE_DEAL = "update_deal"
    ADD_TO_LIST = "add_to_list"
    REMOVE_FROM_LIST = "remove_from_list"
    SEND_NOTIFICATION = "send_notification"
    WEBHOOK = "webhook"
    WAIT = "wait"
    CONDITION = "condition"
    SPLIT = "split"
    GO_TO = "go_to"


class WaitUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"


# --- Per-kind configuration payloads ---

class SendEmailConfig(BaseModel):
    template_id: Optional[str] = None
    subject: str
    body_html: str
    body_text: Optional[str] = None
    from_email: Optional[str] = None
    from_name: Optional[str] = None


class SendWhatsAppConfig(BaseModel):
    template_id: str
    variables: Dict[str, str] = Field(default_factory=dict)


class TagConfig(BaseModel):
    tag_name: str = Field(min_length=1)


class FieldsConfig(BaseModel):
    fields: Dict[str, Any] = Field(default_factory=dict)


class ListConfig(BaseModel):
    list_id: str = Field(min_length=1)


class NotificationConfig(BaseModel):
    notify_users: List[str] = Field(default_factory=list)
    message: str


class WebhookConfig(BaseModel):
    url: str
    method: Literal["GET", "POST", "PUT"] = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[str] = None


class WaitConfig(BaseModel):
    duration: float = Field(ge=0)
    unit: WaitUnit = WaitUnit.HOURS

    def as_timedelta(self) -> timedelta:
        if self.unit == WaitUnit.MINUTES:
            return timedelta(minutes=self.duration)
        if self.unit == WaitUnit.DAYS:
            return timedelta(days=self.duration)
        return timedelta(hours=self.duration)


class ConditionConfig(BaseModel):
    conditions: ConditionGroup = Field(default_factory=ConditionGroup)
    true_branch: List[str] = Field(default_factory=list)
    false_branch: List[str] = Field(default_factory=list)


class SplitBranch(BaseModel):
    name: str = Field(min_length=1)
    weight: int = Field(gt=0)
    actions: List[str] = Field(default_factory=list)


class SplitConfig(BaseModel):
    name: str = "A/B Test"
    branches: List[SplitBranch] = Field(min_length=1)


class GoToConfig(BaseModel):
    target_action_id: str = Field(min_length=1)


# --- Action variants ---

class BaseAction(BaseModel):
    id: str = Field(min_length=1)
    next_action_id: Optional[str] = None


class SendEmailAction(BaseAction):
    type: Literal["send_email"] = "send_email"
    config: SendEmailConfig


class SendWhatsAppAction(BaseAction):
    type: Literal["send_whatsapp"] = "send_whatsapp"
    config: SendWhatsAppConfig


class AddTagAction(BaseAction):
    type: Literal["add_tag"] = "add_tag"
    config: TagConfig


class RemoveTagAction(BaseAction):
    type: Literal["remove_tag"] = "remove_tag"
    config: TagConfig


class UpdateContactAction(BaseAction):
    type: Literal["update_contact"] = "update_contact"
    config: FieldsConfig


class CreateDealAction(BaseAction):
    type: Literal["create_deal"] = "create_deal"
    config: FieldsConfig


class UpdateDealAction(BaseAction):
    type: Literal["update_deal"] = "update_deal"
    config: FieldsConfig


class AddToListAction(BaseAction):
    type: Literal["add_to_list"] = "add_to_list"
    config: ListConfig


class RemoveFromListAction(BaseAction):
    type: Literal["remove_from_list"] = "remove_from_list"
    config: ListConfig


class SendNotificationAction(BaseAction):
    type: Literal["send_notification"] = "send_notification"
    config: NotificationConfig


class WebhookAction(BaseAction):
    type: Literal["webhook"] = "webhook"
    config: WebhookConfig


class WaitAction(BaseAction):
    type: Literal["wait"] = "wait"
    config: WaitConfig


class ConditionAction(BaseAction):
    type: Literal["condition"] = "condition"
    config: ConditionConfig


class SplitAction(BaseAction):
    type: Literal["split"] = "split"
    config: SplitConfig


class GoToAction(BaseAction):
    type: Literal["go_to"] = "go_to"
    config: GoToConfig


Action = Annotated[
    Union[
        SendEmailAction,
        SendWhatsAppAction,
        AddTagAction,
        RemoveTagAction,
        UpdateContactAction,
        CreateDealAction,
        UpdateDealAction,
        AddToListAction,
        RemoveFromListAction,
        SendNotificationAction,
        WebhookAction,
        WaitAction,
        ConditionAction,
        SplitAction,
        GoToAction,
    ],
    Field(discriminator="type"),
]

MUTATING_ACTIONS = (
    SendEmailAction,
    SendWhatsAppAction,
    AddTagAction,
    RemoveTagAction,
    UpdateContactAction,
    CreateDealAction,
    UpdateDealAction,
    AddToListAction,
    RemoveFromListAction,
    SendNotificationAction,
    WebhookAction,
)

_action_list_adapter = TypeAdapter(List[Action])


def parse_actions(payload: List[Dict[str, Any]]) -> List[BaseAction]:
    """Validates raw action dicts into their typed variants."""
    return _action_list_adapter.validate_python(payload)
