import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import EngineConfig
from collaborators.mock_collaborators import MockCollaborator
from collaborators.snapshot_provider import StaticSnapshotProvider, StaticAudienceProvider
from executor.action_registry import MUTATING_KINDS
from executor.engine_factory import AutomationEngine


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_automation(
    actions: List[Dict[str, Any]],
    trigger: Optional[Dict[str, Any]] = None,
    settings: Optional[Dict[str, Any]] = None,
    **extra,
) -> Dict[str, Any]:
    payload = {
        "name": extra.pop("name", "Test automation"),
        "trigger": trigger or {"type": "form_submission", "config": {"form_id": "signup"}},
        "actions": actions,
        "settings": settings or {},
    }
    payload.update(extra)
    return payload


@pytest.fixture
def clock():
    # Wednesday 10:00 UTC
    return FakeClock(datetime(2024, 1, 3, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def collaborators():
    return {kind.value: MockCollaborator(kind.value) for kind in MUTATING_KINDS}


@pytest.fixture
def snapshots():
    return StaticSnapshotProvider()


@pytest.fixture
def audiences():
    return StaticAudienceProvider()


@pytest.fixture
def engine_config():
    return EngineConfig(retry_base_delay=0, retry_max_delay=0, action_timeout_seconds=1)


@pytest.fixture
def engine(engine_config, clock, collaborators, snapshots, audiences):
    return AutomationEngine(
        engine_config,
        collaborators=collaborators,
        snapshot_provider=snapshots,
        audience_provider=audiences,
        clock=clock,
    )


@pytest.fixture
def publish(engine):
    def _publish(payload: Dict[str, Any]):
        automation = engine.service.create(payload)
        return engine.service.publish(automation.id)
    return _publish


@pytest.fixture
def contact():
    return {"id": "c1", "email": "ana@example.com", "first_name": "Ana", "tags": ["lead"], "score": 42}
