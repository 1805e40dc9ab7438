import asyncio
import logging

import uvicorn

from app import app, engine, config

logger = logging.getLogger("automation_engine")


async def main():
    """Runs the API and the scheduler loop in one process so they share the engine's stores."""
    server = uvicorn.Server(uvicorn.Config(app, host="0.0.0.0", port=8050, log_level="warning"))
    scheduler_task = asyncio.create_task(engine.scheduler.start())
    logger.info(f"Worker started: API on :8050, scheduler every {config.scheduler_interval_seconds}s")
    try:
        await server.serve()
    finally:
        engine.scheduler.stop()
        scheduler_task.cancel()
        try:
            await scheduler_task
        except asyncio.CancelledError:
            pass
        logger.info("Stopped.")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Stopping...")
