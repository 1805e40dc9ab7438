import asyncio
import logging
from typing import Any, Callable, Dict

from pydantic import BaseModel

from api_clients.base_client import BackendError
from api_clients.record_client import RecordClient, MessagingClient
from collaborators.base_collaborator import BaseCollaborator, ActionResult
from executor.template_renderer import TemplateRenderer, build_context
from models.actions import ActionType

logger = logging.getLogger("automation_engine")


class BackendCollaborator(BaseCollaborator):
    """
    Runs a blocking backend call in a worker thread and turns BackendError
    into a failed ActionResult (permanent for 4xx other than 429).
    """

    async def _call(self, func: Callable, *args) -> ActionResult:
        try:
            response = await asyncio.to_thread(func, *args)
        except BackendError as e:
            return ActionResult.failed(str(e), permanent=not e.is_transient, status_code=e.status_code)
        return ActionResult.ok(response=response)


class RecordUpdater(BackendCollaborator):
    """Tags, contact/deal fields and list membership, one instance per action kind."""

    def __init__(self, kind: ActionType, client: RecordClient = None):
        self.kind = ActionType(kind)
        self.client = client or RecordClient()
        handlers = {
            ActionType.ADD_TAG: self._add_tag,
            ActionType.REMOVE_TAG: self._remove_tag,
            ActionType.UPDATE_CONTACT: self._update_contact,
            ActionType.CREATE_DEAL: self._create_deal,
            ActionType.UPDATE_DEAL: self._update_deal,
            ActionType.ADD_TO_LIST: self._add_to_list,
            ActionType.REMOVE_FROM_LIST: self._remove_from_list,
        }
        if self.kind not in handlers:
            raise ValueError(f"RecordUpdater does not handle '{self.kind.value}'")
        self._handler = handlers[self.kind]

    async def execute(self, config: BaseModel, snapshot: Dict[str, Any]) -> ActionResult:
        return await self._handler(config, snapshot)

    async def _add_tag(self, config, snapshot):
        # Adding a tag the contact already carries is a no-op
        if config.tag_name in (snapshot.get("tags") or []):
            return ActionResult.ok(tag=config.tag_name, unchanged=True)
        return await self._call(self.client.add_tag, snapshot["id"], config.tag_name)

    async def _remove_tag(self, config, snapshot):
        if config.tag_name not in (snapshot.get("tags") or []):
            return ActionResult.ok(tag=config.tag_name, unchanged=True)
        return await self._call(self.client.remove_tag, snapshot["id"], config.tag_name)

    async def _update_contact(self, config, snapshot):
        return await self._call(self.client.update_contact, snapshot["id"], dict(config.fields))

    async def _create_deal(self, config, snapshot):
        return await self._call(self.client.create_deal, snapshot["id"], dict(config.fields))

    async def _update_deal(self, config, snapshot):
        fields = dict(config.fields)
        deal_id = fields.pop("deal_id", None) or snapshot.get("deal_id")
        if not deal_id:
            return ActionResult.failed("update_deal needs a deal_id in the fields or the snapshot", permanent=True)
        return await self._call(self.client.update_deal, deal_id, fields)

    async def _add_to_list(self, config, snapshot):
        return await self._call(self.client.add_to_list, config.list_id, snapshot["id"])

    async def _remove_from_list(self, config, snapshot):
        return await self._call(self.client.remove_from_list, config.list_id, snapshot["id"])


class Notifier(BackendCollaborator):
    def __init__(self, client: MessagingClient = None, renderer: TemplateRenderer = None):
        self.client = client or MessagingClient()
        self.renderer = renderer or TemplateRenderer()

    async def execute(self, config, snapshot: Dict[str, Any]) -> ActionResult:
        if not config.notify_users:
            return ActionResult.ok(notified=0)
        try:
            message = self.renderer.render(config.message, build_context(snapshot))
        except ValueError as e:
            return ActionResult.failed(str(e), permanent=True)
        return await self._call(self.client.notify, list(config.notify_users), message, {"contact_id": snapshot["id"]})


class WhatsAppSender(BackendCollaborator):
    def __init__(self, client: MessagingClient = None, renderer: TemplateRenderer = None):
        self.client = client or MessagingClient()
        self.renderer = renderer or TemplateRenderer()

    async def execute(self, config, snapshot: Dict[str, Any]) -> ActionResult:
        phone = snapshot.get("phone") or snapshot.get("whatsapp")
        if not phone:
            return ActionResult.failed(f"Contact {snapshot['id']} has no phone number", permanent=True)
        context = build_context(snapshot)
        try:
            variables = {k: self.renderer.render(v, context) for k, v in config.variables.items()}
        except ValueError as e:
            return ActionResult.failed(str(e), permanent=True)
        return await self._call(self.client.send_whatsapp, phone, config.template_id, variables)
