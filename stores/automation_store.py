import threading
import logging
from typing import Dict, List, Optional

from models.automation import Automation, AutomationStatus, TriggerType
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")


class AutomationStore:
    """In-process repository of automation definitions."""

    def __init__(self):
        self._items: Dict[str, Automation] = {}
        self._lock = threading.RLock()

    def get(self, automation_id: str) -> Optional[Automation]:
        with self._lock:
            item = self._items.get(automation_id)
            return item.model_copy(deep=True) if item else None

    def list(self, status: Optional[AutomationStatus] = None) -> List[Automation]:
        with self._lock:
            items = [a for a in self._items.values() if status is None or a.status == status]
            return [a.model_copy(deep=True) for a in items]

    def list_by_trigger(self, trigger_type: TriggerType) -> List[Automation]:
        with self._lock:
            return [a.model_copy(deep=True) for a in self._items.values() if a.trigger.type == trigger_type]

    def save(self, automation: Automation) -> Automation:
        with self._lock:
            existing = self._items.get(automation.id)
            stored = automation.model_copy(deep=True)
            if existing:
                stored.version = existing.version + 1
            stored.updated_at = utcnow()
            self._items[automation.id] = stored
            return stored.model_copy(deep=True)

    def delete(self, automation_id: str) -> bool:
        with self._lock:
            return self._items.pop(automation_id, None) is not None
