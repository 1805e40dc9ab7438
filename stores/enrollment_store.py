import threading
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Iterable, Set, Tuple

from models.enrollment import Enrollment, EnrollmentStatus, LIVE_STATUSES
from executor.errors import EnrollmentNotFoundError, StaleEnrollmentError
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")


class EnrollmentStore:
    """
    Enrollment records indexed by id and by (automation_id, entity_id).

    Writers follow a read / modify / save cycle: `save` succeeds only if the
    stored version still matches the one that was read, and bumps it. A lease
    (`acquire_lease`) gives one worker the right to advance an enrollment.
    """

    def __init__(self):
        self._items: Dict[str, Enrollment] = {}
        self._by_entity: Dict[Tuple[str, str], Set[str]] = defaultdict(set)
        self._lock = threading.RLock()

    def transaction(self):
        """Holds the store lock so a check-then-insert is atomic."""
        return self._lock

    def insert(self, enrollment: Enrollment) -> Enrollment:
        with self._lock:
            stored = enrollment.model_copy(deep=True)
            self._items[stored.id] = stored
            self._by_entity[(stored.automation_id, stored.entity_id)].add(stored.id)
            return stored.model_copy(deep=True)

    def get(self, enrollment_id: str) -> Optional[Enrollment]:
        with self._lock:
            item = self._items.get(enrollment_id)
            return item.model_copy(deep=True) if item else None

    def list_for_entity(self, automation_id: str, entity_id: str) -> List[Enrollment]:
        with self._lock:
            ids = self._by_entity.get((automation_id, entity_id), set())
            items = [self._items[i] for i in ids]
            return [e.model_copy(deep=True) for e in sorted(items, key=lambda e: e.enrolled_at)]

    def list_for_automation(self, automation_id: str, statuses: Optional[Iterable[EnrollmentStatus]] = None) -> List[Enrollment]:
        wanted = set(statuses) if statuses else None
        with self._lock:
            return [
                e.model_copy(deep=True) for e in self._items.values()
                if e.automation_id == automation_id and (wanted is None or e.status in wanted)
            ]

    def list_live(self) -> List[Enrollment]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._items.values() if e.status in LIVE_STATUSES]

    def count_live(self, automation_id: str) -> int:
        with self._lock:
            return sum(1 for e in self._items.values() if e.automation_id == automation_id and e.status in LIVE_STATUSES)

    def save(self, enrollment: Enrollment) -> Enrollment:
        with self._lock:
            current = self._items.get(enrollment.id)
            if current is None:
                raise EnrollmentNotFoundError(enrollment.id)
            if current.version != enrollment.version:
                raise StaleEnrollmentError(
                    f"Enrollment {enrollment.id} is at version {current.version}, write was based on {enrollment.version}"
                )
            stored = enrollment.model_copy(deep=True)
            stored.version = current.version + 1
            stored.updated_at = utcnow()
            self._items[stored.id] = stored
            return stored.model_copy(deep=True)

    def acquire_lease(self, enrollment_id: str, owner: str, ttl_seconds: float, now: Optional[datetime] = None) -> Optional[Enrollment]:
        """
        Claims the single-writer lease. Returns the leased enrollment, or None
        when another owner holds an unexpired lease or the enrollment is
        already terminal.
        """
        now = now or utcnow()
        with self._lock:
            current = self._items.get(enrollment_id)
            if current is None or current.status not in LIVE_STATUSES:
                return None
            held = current.lease_owner and current.lease_expires_at and current.lease_expires_at > now
            if held and current.lease_owner != owner:
                return None
            claimed = current.model_copy(deep=True)
            claimed.lease_owner = owner
            claimed.lease_expires_at = now + timedelta(seconds=ttl_seconds)
            claimed.version = current.version + 1
            self._items[enrollment_id] = claimed
            return claimed.model_copy(deep=True)

    def renew_lease(self, enrollment_id: str, owner: str, ttl_seconds: float, now: Optional[datetime] = None) -> Optional[Enrollment]:
        """
        Extends a lease `owner` still holds. Returns None when the enrollment
        is gone, terminal, or leased by someone else.
        """
        now = now or utcnow()
        with self._lock:
            current = self._items.get(enrollment_id)
            if current is None or current.status not in LIVE_STATUSES or current.lease_owner != owner:
                return None
            current.lease_expires_at = now + timedelta(seconds=ttl_seconds)
            current.version += 1
            return current.model_copy(deep=True)

    def release_lease(self, enrollment_id: str, owner: str) -> bool:
        with self._lock:
            current = self._items.get(enrollment_id)
            if current is None or current.lease_owner != owner:
                return False
            current.lease_owner = None
            current.lease_expires_at = None
            current.version += 1
            return True

    def is_leased(self, enrollment_id: str, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        with self._lock:
            current = self._items.get(enrollment_id)
            return bool(current and current.lease_owner and current.lease_expires_at and current.lease_expires_at > now)
