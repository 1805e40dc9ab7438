import logging
from datetime import datetime
from typing import Callable, Dict, Optional

from collaborators.base_collaborator import BaseCollaborator
from collaborators.snapshot_provider import (
    AudienceProvider,
    BackendAudienceProvider,
    BackendSnapshotProvider,
    SnapshotProvider,
)
from api_clients.record_client import RecordClient
from config import EngineConfig
from executor.automation_service import AutomationService
from executor.collaborator_builder import CollaboratorBuilder
from executor.enrollment_manager import EnrollmentManager
from executor.event_ingestor import EventIngestor
from executor.graph_executor import GraphExecutor
from scheduler.enrollment_runner import EnrollmentRunner
from scheduler.scheduler_loop import SchedulerLoop
from stores.automation_store import AutomationStore
from stores.enrollment_store import EnrollmentStore
from stores.execution_log_store import ExecutionLogStore
from utils.time_utils import utcnow

logger = logging.getLogger("automation_engine")


class AutomationEngine:
    """Wires stores, engine components and collaborators into one object."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        collaborators: Optional[Dict[str, BaseCollaborator]] = None,
        snapshot_provider: Optional[SnapshotProvider] = None,
        audience_provider: Optional[AudienceProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or EngineConfig()
        self.clock = clock

        if self.config.collaborator_mode == "live":
            client = RecordClient(self.config.backend_url, self.config.backend_api_key, self.config.backend_timeout_seconds)
            snapshot_provider = snapshot_provider or BackendSnapshotProvider(client)
            audience_provider = audience_provider or BackendAudienceProvider(client)

        self.collaborators = collaborators if collaborators is not None else CollaboratorBuilder.build(self.config)
        missing = CollaboratorBuilder.missing(self.collaborators)
        if missing:
            logger.warning(f"No collaborator for {missing}; those actions will fail")

        self.automations = AutomationStore()
        self.enrollments = EnrollmentStore()
        self.logs = ExecutionLogStore(retention=self.config.log_retention)

        self.manager = EnrollmentManager(self.automations, self.enrollments, self.logs, clock=clock)
        self.executor = GraphExecutor(
            self.automations,
            self.enrollments,
            self.logs,
            self.manager,
            self.collaborators,
            snapshot_provider=snapshot_provider,
            config=self.config,
            clock=clock,
        )
        self.service = AutomationService(self.automations, self.logs, self.manager, clock=clock)
        self.ingestor = EventIngestor(self.automations, self.manager, self.executor, snapshot_provider=snapshot_provider)
        self.runner = EnrollmentRunner(self.executor, workers=self.config.scheduler_workers)
        self.scheduler = SchedulerLoop(
            self.automations,
            self.manager,
            self.runner,
            self.ingestor,
            audience_provider=audience_provider,
            interval_seconds=self.config.scheduler_interval_seconds,
            clock=clock,
        )
