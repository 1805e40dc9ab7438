import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from api_clients.record_client import RecordClient

logger = logging.getLogger("automation_engine")


class SnapshotProvider(ABC):
    """Read-only access to the current attributes of a contact or deal."""

    @abstractmethod
    async def get_snapshot(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        pass


class BackendSnapshotProvider(SnapshotProvider):
    def __init__(self, client: RecordClient = None):
        self.client = client or RecordClient()

    async def get_snapshot(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        if entity_type == "deal":
            return await asyncio.to_thread(self.client.get_deal, entity_id)
        return await asyncio.to_thread(self.client.get_contact, entity_id)


class StaticSnapshotProvider(SnapshotProvider):
    """In-memory snapshots keyed by (entity_type, entity_id)."""

    def __init__(self, snapshots: Optional[Dict[tuple, Dict[str, Any]]] = None):
        self.snapshots = dict(snapshots or {})

    def put(self, entity_id: str, snapshot: Dict[str, Any], entity_type: str = "contact"):
        self.snapshots[(entity_type, entity_id)] = dict(snapshot)

    async def get_snapshot(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        snapshot = self.snapshots.get((entity_type, entity_id))
        return dict(snapshot) if snapshot is not None else None


class AudienceProvider(ABC):
    """Contacts a date-based automation should fire for. Each item carries an "id"."""

    @abstractmethod
    async def list_audience(self, automation_id: str) -> List[Dict[str, Any]]:
        pass


class BackendAudienceProvider(AudienceProvider):
    def __init__(self, client: RecordClient = None):
        self.client = client or RecordClient()

    async def list_audience(self, automation_id: str) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self.client.list_audience, automation_id)


class StaticAudienceProvider(AudienceProvider):
    def __init__(self, audiences: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.audiences = dict(audiences or {})

    async def list_audience(self, automation_id: str) -> List[Dict[str, Any]]:
        return [dict(c) for c in self.audiences.get(automation_id, [])]
