from typing import Dict, Optional

from api_clients.record_client import RecordClient, MessagingClient
from collaborators.base_collaborator import BaseCollaborator
from collaborators.backend_collaborators import RecordUpdater, Notifier, WhatsAppSender
from collaborators.email_sender import SMTPEmailSender
from collaborators.mock_collaborators import MockCollaborator
from collaborators.webhook_caller import WebhookCaller
from config import EngineConfig
from executor.action_registry import MUTATING_KINDS, get_spec
from executor.template_renderer import TemplateRenderer
from models.actions import ActionType

RECORD_KINDS = {
    ActionType.ADD_TAG,
    ActionType.REMOVE_TAG,
    ActionType.UPDATE_CONTACT,
    ActionType.CREATE_DEAL,
    ActionType.UPDATE_DEAL,
    ActionType.ADD_TO_LIST,
    ActionType.REMOVE_FROM_LIST,
}


class CollaboratorBuilder:

    @staticmethod
    def validate_config(config: EngineConfig):
        """Validates collaborator configuration. Raises ValueError if invalid."""
        if config.collaborator_mode not in ("live", "mock"):
            raise ValueError(f"Unknown collaborator mode '{config.collaborator_mode}'")
        if config.collaborator_mode == "live":
            if not config.smtp.host:
                raise ValueError("Live mode requires SMTP_HOST")
            if not config.backend_url:
                raise ValueError("Live mode requires ENGINE_BACKEND_URL")

    @staticmethod
    def build(config: EngineConfig) -> Dict[str, BaseCollaborator]:
        """Returns one collaborator per mutating action kind, keyed by registry name."""
        CollaboratorBuilder.validate_config(config)

        if config.collaborator_mode == "mock":
            return {get_spec(kind).collaborator: MockCollaborator(kind.value) for kind in MUTATING_KINDS}

        renderer = TemplateRenderer()
        records = RecordClient(config.backend_url, config.backend_api_key, config.backend_timeout_seconds)
        messaging = MessagingClient(config.backend_url, config.backend_api_key, config.backend_timeout_seconds)

        collaborators: Dict[str, BaseCollaborator] = {}
        for kind in MUTATING_KINDS:
            name = get_spec(kind).collaborator
            if kind in RECORD_KINDS:
                collaborators[name] = RecordUpdater(kind, records)
            elif kind == ActionType.SEND_EMAIL:
                collaborators[name] = SMTPEmailSender(config.smtp.model_dump(), renderer)
            elif kind == ActionType.SEND_WHATSAPP:
                collaborators[name] = WhatsAppSender(messaging, renderer)
            elif kind == ActionType.SEND_NOTIFICATION:
                collaborators[name] = Notifier(messaging, renderer)
            elif kind == ActionType.WEBHOOK:
                collaborators[name] = WebhookCaller(config.action_timeout_seconds, renderer)
            else:
                raise ValueError(f"No collaborator for action kind '{kind.value}'")
        return collaborators

    @staticmethod
    def missing(collaborators: Dict[str, BaseCollaborator]) -> Optional[list]:
        """Registry collaborator names with no implementation in `collaborators`."""
        names = [get_spec(kind).collaborator for kind in MUTATING_KINDS]
        absent = [n for n in names if n not in collaborators]
        return absent or None
