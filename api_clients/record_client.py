from typing import Any, Dict, List, Optional
import logging

from api_clients.base_client import BaseClient

logger = logging.getLogger("automation_engine")


class RecordClient(BaseClient):
    """Contacts, deals and marketing lists owned by the business backend."""

    def get_contact(self, contact_id: str) -> Optional[Dict[str, Any]]:
        return self._get(f"/crm/contacts/{contact_id}")

    def get_deal(self, deal_id: str) -> Optional[Dict[str, Any]]:
        return self._get(f"/crm/deals/{deal_id}")

    def update_contact(self, contact_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._put(f"/crm/contacts/{contact_id}", json={"$set": fields})

    def add_tag(self, contact_id: str, tag_name: str) -> Optional[Dict[str, Any]]:
        return self._post(f"/crm/contacts/{contact_id}/tags", json={"tag": tag_name})

    def remove_tag(self, contact_id: str, tag_name: str) -> Optional[Dict[str, Any]]:
        return self._delete(f"/crm/contacts/{contact_id}/tags/{tag_name}")

    def create_deal(self, contact_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._post("/crm/deals", json={**fields, "contactId": contact_id})

    def update_deal(self, deal_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._put(f"/crm/deals/{deal_id}", json={"$set": fields})

    def add_to_list(self, list_id: str, contact_id: str) -> Optional[Dict[str, Any]]:
        return self._post(f"/marketing/audiences/{list_id}/contacts", json={"contactId": contact_id})

    def remove_from_list(self, list_id: str, contact_id: str) -> Optional[Dict[str, Any]]:
        return self._delete(f"/marketing/audiences/{list_id}/contacts/{contact_id}")

    def list_audience(self, automation_id: str) -> List[Dict[str, Any]]:
        """Contacts a date-based automation should run for."""
        return self._get(f"/marketing/automations/{automation_id}/audience") or []


class MessagingClient(BaseClient):
    """Internal notifications and WhatsApp delivery, both owned by the backend."""

    def notify(self, user_ids: List[str], message: str, context: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._post("/notifications", json={"users": user_ids, "message": message, "context": context})

    def send_whatsapp(self, phone: str, template_id: str, variables: Dict[str, str]) -> Optional[Dict[str, Any]]:
        return self._post("/marketing/whatsapp/send", json={"to": phone, "templateId": template_id, "variables": variables})
