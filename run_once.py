import sys, os
import asyncio
import json
import logging
import pathlib
from datetime import timedelta
from typing import Any, Dict, List

# Ensure we are in the correct directory regardless of how this is called
SCRIPT_DIR = str(pathlib.Path(__file__).parent.absolute())
os.chdir(SCRIPT_DIR)

from dotenv import load_dotenv
load_dotenv()

from config import load_config
from executor.engine_factory import AutomationEngine
from models.automation import TriggerType

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("automation_engine")


def load_definitions(engine: AutomationEngine, payloads: List[Dict[str, Any]], lookback_seconds: float) -> int:
    """
    Creates and publishes each definition. A one-shot run has no earlier
    tick, so date-based schedules look back one scheduler interval: an
    occurrence that fell due since the previous cron invocation still fires.
    """
    since = engine.clock() - timedelta(seconds=lookback_seconds)
    for payload in payloads:
        automation = engine.service.publish(engine.service.create(payload).id)
        if automation.trigger.type == TriggerType.DATE_BASED:
            engine.scheduler.rewind(automation.id, since)
    return len(payloads)


async def main(definitions_path: str = None):
    config = load_config()
    engine = AutomationEngine(config)

    if definitions_path:
        with open(definitions_path) as f:
            count = load_definitions(engine, json.load(f), config.scheduler_interval_seconds)
        logger.info(f"Published {count} automation(s) from {definitions_path}")

    report = await engine.scheduler.tick()
    logger.info(f"Tick finished: {report.triggers_fired} triggers fired, {report.enrolled} enrolled, {report.due} due")
    print(report.model_dump_json(indent=2))


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
