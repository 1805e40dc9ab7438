import os
from typing import Optional

from pydantic import BaseModel, Field


class SMTPSettings(BaseModel):
    host: Optional[str] = None
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    from_email: str = "noreply@example.com"
    from_name: Optional[str] = None
    rate_limit_per_minute: int = 60


class EngineConfig(BaseModel):
    backend_url: str = "http://localhost:8000/api"
    backend_api_key: Optional[str] = None
    backend_timeout_seconds: float = 30

    collaborator_mode: str = Field("mock", pattern="^(live|mock)$")
    smtp: SMTPSettings = Field(default_factory=SMTPSettings)

    scheduler_interval_seconds: float = 60
    scheduler_workers: int = 10
    lease_ttl_seconds: float = 300

    hop_budget: int = 50
    action_timeout_seconds: float = 30
    max_action_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    log_retention: int = 100
    log_level: str = "INFO"
    log_file: str = "automation_engine.log"


def _bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> EngineConfig:
    """Builds the engine configuration from the environment (call load_dotenv() first)."""
    smtp = SMTPSettings(
        host=os.getenv("SMTP_HOST"),
        port=int(os.getenv("SMTP_PORT", "587")),
        username=os.getenv("SMTP_USERNAME"),
        password=os.getenv("SMTP_PASSWORD"),
        use_tls=_bool(os.getenv("SMTP_USE_TLS", "true")),
        from_email=os.getenv("SMTP_FROM_EMAIL", "noreply@example.com"),
        from_name=os.getenv("SMTP_FROM_NAME"),
        rate_limit_per_minute=int(os.getenv("SMTP_RATE_LIMIT_PER_MINUTE", "60")),
    )
    return EngineConfig(
        backend_url=os.getenv("ENGINE_BACKEND_URL", "http://localhost:8000/api"),
        backend_api_key=os.getenv("ENGINE_BACKEND_API_KEY"),
        backend_timeout_seconds=float(os.getenv("ENGINE_BACKEND_TIMEOUT", "30")),
        collaborator_mode=os.getenv("ENGINE_COLLABORATOR_MODE", "mock").lower(),
        smtp=smtp,
        scheduler_interval_seconds=float(os.getenv("SCHEDULER_INTERVAL_SECONDS", "60")),
        scheduler_workers=int(os.getenv("SCHEDULER_WORKERS", "10")),
        lease_ttl_seconds=float(os.getenv("ENGINE_LEASE_TTL_SECONDS", "300")),
        hop_budget=int(os.getenv("ENGINE_HOP_BUDGET", "50")),
        action_timeout_seconds=float(os.getenv("ENGINE_ACTION_TIMEOUT_SECONDS", "30")),
        max_action_attempts=int(os.getenv("ENGINE_MAX_ACTION_ATTEMPTS", "3")),
        retry_base_delay=float(os.getenv("ENGINE_RETRY_BASE_DELAY", "1.0")),
        retry_max_delay=float(os.getenv("ENGINE_RETRY_MAX_DELAY", "10.0")),
        log_retention=int(os.getenv("ENGINE_LOG_RETENTION", "100")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_file=os.getenv("LOG_FILE", "automation_engine.log"),
    )
