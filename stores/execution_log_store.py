import threading
import logging
from collections import defaultdict, deque
from datetime import datetime
from typing import Deque, Dict, List, Optional
from uuid import uuid4

from models.automation import AutomationStats
from models.enrollment import Enrollment
from models.execution_log import ExecutionLogEntry, ActionOutcome, LogStatus
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")

COUNTER_FIELDS = ("total_executions", "successful_executions", "failed_executions", "cancelled_executions")


class ExecutionLogStore:
    """
    Append-only run records plus the per-automation counters derived from
    them. Only the most recent `retention` runs per automation are kept;
    a run that is still open (suspended on a wait) survives eviction until
    it is closed.
    """

    def __init__(self, retention: int = 100):
        self.retention = retention
        self._runs: Dict[str, ExecutionLogEntry] = {}
        self._recent: Dict[str, Deque[str]] = defaultdict(deque)
        self._counters: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._rejections: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._last_executed_at: Dict[str, datetime] = {}
        self._last_error: Dict[str, str] = {}
        self._lock = threading.RLock()

    # ── Runs ──────────────────────────────────────────────────────────────────

    def open_run(self, enrollment: Enrollment, now: Optional[datetime] = None) -> ExecutionLogEntry:
        with self._lock:
            entry = ExecutionLogEntry(
                id=uuid4().hex,
                automation_id=enrollment.automation_id,
                enrollment_id=enrollment.id,
                entity_id=enrollment.entity_id,
                triggered_by=enrollment.triggered_by,
                started_at=now or utcnow(),
            )
            self._runs[entry.id] = entry
            recent = self._recent[entry.automation_id]
            recent.append(entry.id)
            while len(recent) > self.retention:
                evicted = recent.popleft()
                old = self._runs.get(evicted)
                if old is not None and not old.is_open:
                    del self._runs[evicted]
            return entry.model_copy(deep=True)

    def append_outcome(self, run_id: str, outcome: ActionOutcome) -> None:
        with self._lock:
            entry = self._runs.get(run_id)
            if entry is None:
                logger.warning(f"Outcome for unknown run {run_id} dropped: {outcome.action_id}")
                return
            if not entry.is_open:
                logger.warning(f"Run {run_id} is closed; outcome for {outcome.action_id} dropped")
                return
            entry.actions_executed.append(outcome.model_copy(deep=True))

    def close_run(self, run_id: str, status: LogStatus, error: Optional[str] = None, now: Optional[datetime] = None) -> Optional[ExecutionLogEntry]:
        with self._lock:
            entry = self._runs.get(run_id)
            if entry is None or not entry.is_open:
                return None
            entry.status = status
            entry.error = error
            entry.finished_at = now or utcnow()
            if run_id not in self._recent[entry.automation_id]:
                # Evicted while suspended; it has now left the window for good.
                del self._runs[run_id]
            return entry.model_copy(deep=True)

    def get_run(self, run_id: str) -> Optional[ExecutionLogEntry]:
        with self._lock:
            entry = self._runs.get(run_id)
            return entry.model_copy(deep=True) if entry else None

    def recent(self, automation_id: str, limit: Optional[int] = None) -> List[ExecutionLogEntry]:
        """Most recent runs first."""
        with self._lock:
            ids = list(self._recent.get(automation_id, ()))
            ids.reverse()
            if limit is not None:
                ids = ids[:limit]
            return [self._runs[i].model_copy(deep=True) for i in ids if i in self._runs]

    # ── Counters ──────────────────────────────────────────────────────────────

    def increment(self, automation_id: str, field: str, amount: int = 1) -> int:
        if field not in COUNTER_FIELDS:
            raise ValueError(f"Unknown counter '{field}'")
        with self._lock:
            self._counters[automation_id][field] += amount
            return self._counters[automation_id][field]

    def counter(self, automation_id: str, field: str) -> int:
        with self._lock:
            return self._counters[automation_id][field]

    def record_rejection(self, automation_id: str, reason: str) -> None:
        with self._lock:
            self._rejections[automation_id][reason] += 1

    def record_execution(self, automation_id: str, now: Optional[datetime] = None) -> None:
        with self._lock:
            self._last_executed_at[automation_id] = now or utcnow()

    def record_error(self, automation_id: str, error: str) -> None:
        with self._lock:
            self._last_error[automation_id] = error

    def stats(self, automation_id: str, contacts_enrolled: int = 0) -> AutomationStats:
        with self._lock:
            counters = self._counters[automation_id]
            return AutomationStats(
                total_executions=counters["total_executions"],
                successful_executions=counters["successful_executions"],
                failed_executions=counters["failed_executions"],
                cancelled_executions=counters["cancelled_executions"],
                rejected_enrollments=dict(self._rejections[automation_id]),
                contacts_enrolled=contacts_enrolled,
                last_executed_at=self._last_executed_at.get(automation_id),
                last_error=self._last_error.get(automation_id),
            )
