import asyncio
import logging
from typing import Iterable, List, Set
from uuid import uuid4

from executor.graph_executor import GraphExecutor, RunOutcome
from models.enrollment import Enrollment

logger = logging.getLogger("automation_engine")


class EnrollmentRunner:
    """
    Runs due enrollments through the Graph Executor with a bounded worker
    pool. An enrollment already in flight in this process is not started
    again; the store lease covers other processes.
    """

    def __init__(self, executor: GraphExecutor, workers: int = 10):
        self.executor = executor
        self.owner = f"runner-{uuid4().hex[:8]}"
        self.semaphore = asyncio.Semaphore(workers)
        self._in_flight: Set[str] = set()

    async def run_batch(self, enrollments: Iterable[Enrollment]) -> List[RunOutcome]:
        seen: Set[str] = set()
        tasks = []
        for enrollment in enrollments:
            if enrollment.id in seen:
                continue
            seen.add(enrollment.id)
            tasks.append(self.run_one(enrollment.id))
        if not tasks:
            return []
        return list(await asyncio.gather(*tasks))

    async def run_one(self, enrollment_id: str) -> RunOutcome:
        if enrollment_id in self._in_flight:
            logger.debug(f"Enrollment {enrollment_id} already in flight; skipping")
            return RunOutcome(enrollment_id=enrollment_id, status="skipped")

        self._in_flight.add(enrollment_id)
        try:
            async with self.semaphore:
                return await self.executor.run(enrollment_id, owner=self.owner)
        except Exception as e:
            logger.exception(f"Run of enrollment {enrollment_id} crashed")
            return RunOutcome(enrollment_id=enrollment_id, status="error", error=str(e))
        finally:
            self._in_flight.discard(enrollment_id)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)
