from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

from pydantic import BaseModel

from collaborators.base_collaborator import BaseCollaborator, ActionResult

logger = logging.getLogger("automation_engine")


class MockCollaborator(BaseCollaborator):
    """
    Records every call instead of touching the outside world.

    `fail_times` makes the first N calls fail (transiently unless
    `permanent`), `delay` simulates a slow provider.
    """

    def __init__(self, name: str, fail_times: int = 0, permanent: bool = False, delay: float = 0.0):
        self.name = name
        self.fail_times = fail_times
        self.permanent = permanent
        self.delay = delay
        self.calls: List[Tuple[BaseModel, Dict[str, Any]]] = []

    async def execute(self, config: BaseModel, snapshot: Dict[str, Any]) -> ActionResult:
        self.calls.append((config, dict(snapshot)))
        logger.info(f"[{self.name}] mock call for entity {snapshot.get('id')}")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_times > 0:
            self.fail_times -= 1
            return ActionResult.failed(f"{self.name} mock failure", permanent=self.permanent)
        return ActionResult.ok(mock=self.name)

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def last_call(self) -> Optional[Tuple[BaseModel, Dict[str, Any]]]:
        return self.calls[-1] if self.calls else None
