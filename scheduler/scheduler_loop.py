import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from collaborators.snapshot_provider import AudienceProvider
from executor.enrollment_manager import EnrollmentManager
from executor.event_ingestor import EventIngestor
from executor.graph_executor import RunOutcome
from models.automation import Automation, AutomationStatus, TriggerType
from models.events import TriggerEvent
from scheduler.enrollment_runner import EnrollmentRunner
from stores.automation_store import AutomationStore
from utils.time_utils import utcnow, next_schedule_occurrence

logger = logging.getLogger("automation_engine")


class TickReport(BaseModel):
    started_at: datetime
    triggers_fired: int = 0
    enrolled: int = 0
    due: int = 0
    outcomes: List[RunOutcome] = Field(default_factory=list)


class SchedulerLoop:
    def __init__(
        self,
        automations: AutomationStore,
        manager: EnrollmentManager,
        runner: EnrollmentRunner,
        ingestor: EventIngestor,
        audience_provider: Optional[AudienceProvider] = None,
        interval_seconds: float = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.automations = automations
        self.manager = manager
        self.runner = runner
        self.ingestor = ingestor
        self.audience_provider = audience_provider
        self.interval = interval_seconds
        self.clock = clock
        self.running = False
        # automation id -> instant its schedule was last evaluated up to
        self._schedule_anchor: Dict[str, datetime] = {}

    async def start(self):
        """Starts the scheduler polling loop."""
        if self.running:
            return

        self.running = True
        logger.info(f"Scheduler started (interval {self.interval}s).")

        while self.running:
            try:
                await self.tick()
            except Exception as e:
                logger.error(f"Scheduler tick failed: {e}")

            await asyncio.sleep(self.interval)

    def stop(self):
        self.running = False
        logger.info("Scheduler stopped.")

    def rewind(self, automation_id: str, since: datetime):
        """Next tick fires schedule occurrences after `since`, even ones before publication."""
        self._schedule_anchor[automation_id] = since

    async def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Fires due date-based triggers, then advances every due enrollment once."""
        now = now or self.clock()
        report = TickReport(started_at=now)

        for automation in self.automations.list(AutomationStatus.ACTIVE):
            if automation.trigger.type != TriggerType.DATE_BASED:
                continue
            enrolled = await self._fire_if_due(automation, now)
            if enrolled is not None:
                report.triggers_fired += 1
                report.enrolled += enrolled

        due = self.manager.find_due(now)
        report.due = len(due)
        if due:
            logger.info(f"{len(due)} enrollments due at {now.isoformat()}")
            report.outcomes = await self.runner.run_batch(due)
        return report

    async def _fire_if_due(self, automation: Automation, now: datetime) -> Optional[int]:
        schedule = automation.trigger.config.schedule
        if schedule is None:
            return None

        anchor = self._schedule_anchor.get(automation.id) or automation.published_at or now
        fire_at = next_schedule_occurrence(schedule, anchor, automation.settings.timezone)
        if fire_at is None or fire_at > now:
            return None

        # Missed occurrences are not replayed: fire once and move the anchor to now
        self._schedule_anchor[automation.id] = now
        if self.audience_provider is None:
            logger.warning(f"Date trigger of automation {automation.id} is due but no audience provider is configured")
            return 0

        try:
            audience = await self.audience_provider.list_audience(automation.id)
        except Exception as e:
            logger.error(f"Could not load audience for automation {automation.id}: {e}")
            return 0

        enrolled = 0
        stamp = fire_at.isoformat()
        for contact in audience:
            entity_id = contact.get("id")
            if not entity_id:
                continue
            event = TriggerEvent(
                type=TriggerType.DATE_BASED,
                entity_id=str(entity_id),
                entity_snapshot=contact,
                metadata={"automation_id": automation.id, "scheduled_for": stamp},
                event_id=f"{automation.id}:{stamp}:{entity_id}",
                occurred_at=now,
            )
            result = await self.ingestor.ingest(event)
            enrolled += result.enrolled

        logger.info(f"Date trigger of automation {automation.id} fired for {stamp}: {enrolled}/{len(audience)} enrolled")
        return enrolled
