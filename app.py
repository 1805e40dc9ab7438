from fastapi import FastAPI, HTTPException, Request, Header
from pydantic import ValidationError
from typing import Any, Dict, List, Optional
import logging

from dotenv import load_dotenv

from config import load_config
from executor.engine_factory import AutomationEngine
from executor.errors import (
    AutomationNotFoundError,
    ConfigurationError,
    GraphValidationError,
    InvalidStateTransition,
    WebhookSignatureError,
)
from models.automation import AutomationStatus
from models.events import TriggerEvent

# Load environment variables from .env file
load_dotenv()
config = load_config()

# Configure logging to file and console
logging.basicConfig(
    level=getattr(logging, config.log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
    handlers=[
        logging.FileHandler(config.log_file),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger("automation_engine")

app = FastAPI(title="Marketing Automation Engine")
engine = AutomationEngine(config)

logger.info(f"Automation engine API ready (collaborators: {config.collaborator_mode})")


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, AutomationNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, GraphValidationError):
        return HTTPException(status_code=422, detail={"message": "Invalid action graph", "errors": e.errors})
    if isinstance(e, ValidationError):
        return HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, InvalidStateTransition):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, WebhookSignatureError):
        return HTTPException(status_code=401, detail=str(e))
    logger.error(f"Unhandled error: {e}")
    return HTTPException(status_code=500, detail="Internal error")


_HANDLED = (AutomationNotFoundError, GraphValidationError, ValidationError, ConfigurationError,
            InvalidStateTransition, WebhookSignatureError)


@app.get("/health")
def health():
    return {"status": "ok", "automations": len(engine.automations.list()), "in_flight": engine.runner.in_flight}


# ── Events ──────────────────────────────────────────────────────────────────────

@app.post("/api/v1/events")
async def ingest_event(event: TriggerEvent):
    report = await engine.ingestor.ingest(event)
    return report.model_dump(mode="json")


@app.post("/api/v1/webhooks/{automation_id}")
async def ingest_webhook(automation_id: str, request: Request, x_signature: Optional[str] = Header(None)):
    raw_body = await request.body()
    try:
        report = await engine.ingestor.ingest_webhook(automation_id, raw_body, x_signature)
    except _HANDLED as e:
        raise _http_error(e)
    return report.model_dump(mode="json")


# ── Automations ─────────────────────────────────────────────────────────────────

@app.get("/api/v1/automations")
def list_automations(status: Optional[AutomationStatus] = None):
    return [a.model_dump(mode="json") for a in engine.service.list(status)]


@app.post("/api/v1/automations", status_code=201)
def create_automation(payload: Dict[str, Any]):
    try:
        automation = engine.service.create(payload)
    except _HANDLED as e:
        raise _http_error(e)
    return automation.model_dump(mode="json")


@app.get("/api/v1/automations/{automation_id}")
def get_automation(automation_id: str):
    try:
        return engine.service.get(automation_id).model_dump(mode="json")
    except _HANDLED as e:
        raise _http_error(e)


@app.put("/api/v1/automations/{automation_id}")
def update_automation(automation_id: str, changes: Dict[str, Any]):
    try:
        return engine.service.update(automation_id, changes).model_dump(mode="json")
    except _HANDLED as e:
        raise _http_error(e)


@app.delete("/api/v1/automations/{automation_id}", status_code=204)
def delete_automation(automation_id: str):
    try:
        engine.service.delete(automation_id)
    except _HANDLED as e:
        raise _http_error(e)


@app.post("/api/v1/automations/{automation_id}/validate")
def validate_automation(automation_id: str):
    try:
        report = engine.service.validate(automation_id)
    except _HANDLED as e:
        raise _http_error(e)
    return {"ok": report.ok, "errors": report.errors, "warnings": report.warnings}


@app.post("/api/v1/automations/{automation_id}/{transition}")
def transition_automation(automation_id: str, transition: str):
    actions = {
        "publish": engine.service.publish,
        "pause": engine.service.pause,
        "resume": engine.service.resume,
        "archive": engine.service.archive,
    }
    if transition not in actions:
        raise HTTPException(status_code=404, detail=f"Unknown transition '{transition}'")
    try:
        return actions[transition](automation_id).model_dump(mode="json")
    except _HANDLED as e:
        raise _http_error(e)


# ── Status surface ──────────────────────────────────────────────────────────────

@app.get("/api/v1/automations/{automation_id}/stats")
def automation_stats(automation_id: str):
    try:
        return engine.service.get_stats(automation_id).model_dump(mode="json")
    except _HANDLED as e:
        raise _http_error(e)


@app.get("/api/v1/automations/{automation_id}/logs")
def automation_logs(automation_id: str, limit: int = 20):
    try:
        return [entry.model_dump(mode="json") for entry in engine.service.recent_logs(automation_id, limit)]
    except _HANDLED as e:
        raise _http_error(e)


@app.get("/api/v1/automations/{automation_id}/enrollments/{entity_id}")
def enrollment_state(automation_id: str, entity_id: str) -> List[Dict[str, Any]]:
    try:
        return [e.model_dump(mode="json") for e in engine.service.enrollment_state(automation_id, entity_id)]
    except _HANDLED as e:
        raise _http_error(e)


@app.post("/api/v1/scheduler/tick")
async def scheduler_tick():
    report = await engine.scheduler.tick()
    return report.model_dump(mode="json")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8050)
