from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class AppConfig:
    agent_slug: str
    organization_id: str | None
    user_id: str | None
    history_window: int | None
    provider_timeout_seconds: float
    provider_max_attempts: int
    transport_open_timeout_seconds: float
    keepalive_seconds: float
    memory_db_path: str
    resume_session_id: str | None
    stream_responses: bool = True
    providers: dict = field(default_factory=dict)
    log_level: str = "INFO"
    log_consumers: list | None = None


def load_json_config() -> dict:
    config_path = Path.cwd() / "config.json"
    if config_path.exists():
        with open(config_path) as f:
            return json.load(f)
    return {}


def _to_bool(value: object, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
    return bool(value)


def _optional_int(value: object) -> int | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return int(value)


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def parse_app_config(config: dict) -> AppConfig:
    return AppConfig(
        agent_slug=str(config.get("Agent", "cadence")).strip().lower(),
        organization_id=_optional_str(config.get("OrganizationId")),
        user_id=_optional_str(config.get("UserId")),
        history_window=_optional_int(config.get("HistoryWindow")),
        provider_timeout_seconds=float(config.get("ProviderTimeoutSeconds", 60.0)),
        provider_max_attempts=max(1, int(config.get("ProviderMaxAttempts", 1))),
        transport_open_timeout_seconds=float(config.get("TransportOpenTimeoutSeconds", 10.0)),
        keepalive_seconds=float(config.get("KeepaliveSeconds", 15.0)),
        memory_db_path=str(config.get("MemoryDbPath", ".agent_turn_pipeline/sessions.db")),
        resume_session_id=_optional_str(config.get("ResumeSessionId")),
        stream_responses=_to_bool(config.get("StreamResponses", True), default=True),
        providers=config.get("Providers", {}) or {},
        log_level=config.get("LogLevel", "INFO"),
        log_consumers=config.get("LogConsumers"),
    )
