import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Iterable, Optional

from models.automation import Automation, TriggerType
from models.enrollment import TriggeredBy
from models.events import TriggerEvent, IngestionReport, IngestionResult
from collaborators.snapshot_provider import SnapshotProvider
from executor.enrollment_manager import EnrollmentManager
from executor.errors import AutomationNotFoundError, ConfigurationError, WebhookSignatureError
from executor.graph_executor import GraphExecutor
from executor.trigger_matcher import TriggerMatcher
from stores.automation_store import AutomationStore
from utils.idempotency import IdempotencyChecker

logger = logging.getLogger("automation_engine")


def sign_payload(secret: str, payload: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: Optional[str]) -> bool:
    """HMAC-SHA256 over the raw body; accepts both raw hex and "sha256=<hex>"."""
    if not signature:
        return False
    if signature.startswith("sha256="):
        signature = signature[7:]
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class EventIngestor:
    """
    Entry point for business events: deduplicates, matches automations,
    enrolls the entity and runs the new enrollment right away so that
    actions before the first wait happen without waiting for a tick.
    """

    def __init__(
        self,
        automations: AutomationStore,
        manager: EnrollmentManager,
        executor: GraphExecutor,
        matcher: Optional[TriggerMatcher] = None,
        snapshot_provider: Optional[SnapshotProvider] = None,
        idempotency: Optional[IdempotencyChecker] = None,
        run_inline: bool = True,
    ):
        self.automations = automations
        self.manager = manager
        self.executor = executor
        self.matcher = matcher or TriggerMatcher()
        self.snapshot_provider = snapshot_provider
        self.idempotency = idempotency or IdempotencyChecker()
        self.run_inline = run_inline

    async def ingest(self, event: TriggerEvent) -> IngestionReport:
        return await self._ingest(event, self.automations.list_by_trigger(event.type))

    async def ingest_webhook(self, automation_id: str, raw_body: bytes, signature: Optional[str] = None) -> IngestionReport:
        automation = self.automations.get(automation_id)
        if automation is None:
            raise AutomationNotFoundError(automation_id)
        if automation.trigger.type != TriggerType.WEBHOOK:
            raise ConfigurationError(f"Automation {automation_id} is not triggered by webhooks")

        secret = automation.settings.webhook_secret
        if secret and not verify_signature(secret, raw_body, signature):
            logger.warning(f"Rejected webhook for automation {automation_id}: bad signature")
            raise WebhookSignatureError("Invalid webhook signature")

        try:
            body = json.loads(raw_body or b"{}")
        except ValueError as e:
            raise ConfigurationError(f"Webhook body is not valid JSON: {e}")
        if not isinstance(body, dict):
            raise ConfigurationError("Webhook body must be a JSON object")

        contact = body.get("contact") or {}
        metadata: Dict[str, Any] = dict(body.get("data") or {})
        metadata["webhook_key"] = automation.trigger.config.webhook_key
        metadata["automation_id"] = automation_id

        event = TriggerEvent(
            type=TriggerType.WEBHOOK,
            entity_id=body.get("entity_id") or body.get("contact_id") or contact.get("id"),
            entity_type=body.get("entity_type", "contact"),
            entity_snapshot=contact,
            metadata=metadata,
            event_id=body.get("event_id"),
        )
        return await self._ingest(event, [automation])

    async def _ingest(self, event: TriggerEvent, candidates: Iterable[Automation]) -> IngestionReport:
        report = IngestionReport()
        if event.event_id and self.idempotency.check_and_mark(f"event:{event.event_id}"):
            report.duplicate = True
            return report

        if event.entity_id:
            # Trigger filters see the same snapshot the enrollment will carry
            event = event.model_copy(update={"entity_snapshot": await self._snapshot(event)})

        matches = self.matcher.match(event, candidates)
        if not matches:
            logger.debug(f"No automation matched {event.type.value} event for {event.entity_id}")
            return report
        if not event.entity_id:
            for match in matches:
                report.results.append(IngestionResult(automation_id=match.automation.id, status="skipped", reason="missing_entity_id"))
                report.skipped += 1
            return report

        snapshot = dict(event.entity_snapshot)
        triggered_by = TriggeredBy(type=event.entity_type, id=event.entity_id, event_type=event.type.value)

        for match in matches:
            automation = match.automation
            result = self.manager.enroll(automation.id, event.entity_id, event.entity_type, triggered_by, snapshot, event.metadata)
            if not result.accepted:
                report.skipped += 1
                report.results.append(IngestionResult(automation_id=automation.id, status="skipped", reason=result.rejected_reason.value))
                continue

            report.enrolled += 1
            entry = IngestionResult(automation_id=automation.id, status="enrolled", enrollment_id=result.enrollment.id)
            if self.run_inline:
                outcome = await self.executor.run(result.enrollment.id)
                entry.run_status = outcome.status
            report.results.append(entry)

        logger.info(f"Event {event.type.value} for {event.entity_id}: {report.enrolled} enrolled, {report.skipped} skipped")
        return report

    async def _snapshot(self, event: TriggerEvent) -> Dict[str, Any]:
        if event.entity_snapshot or self.snapshot_provider is None:
            return dict(event.entity_snapshot)
        try:
            fetched = await self.snapshot_provider.get_snapshot(event.entity_type, event.entity_id)
        except Exception as e:
            logger.warning(f"Could not load snapshot for {event.entity_type} {event.entity_id}: {e}")
            return {}
        return fetched or {}
