from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from agent_turn_pipeline.agents import get_agent
from agent_turn_pipeline.app_config import AppConfig
from agent_turn_pipeline.credentials import ConfigCredentialResolver
from agent_turn_pipeline.logging_config import setup_logging
from agent_turn_pipeline.memory import EventEmitter, MemoryStore, SessionStore
from agent_turn_pipeline.provider import create_provider
from agent_turn_pipeline.relay import StreamRelay
from agent_turn_pipeline.runtime import AgentRuntime, ProviderFactory


@dataclass
class AppRuntime:
    runtime: AgentRuntime
    memory_store: MemoryStore
    agent_slug: str
    active_session_id: str
    log_descriptions: list[str]


def bootstrap_runtime(
    app: AppConfig,
    *,
    environ: dict[str, str] | None = None,
    provider_factory: ProviderFactory = create_provider,
) -> AppRuntime:
    log_descriptions = setup_logging(level=app.log_level, consumers=app.log_consumers)
    agent = get_agent(app.agent_slug)

    db_path = Path(app.memory_db_path)
    if not db_path.is_absolute():
        db_path = Path.cwd() / db_path
    memory_store = MemoryStore(str(db_path))
    sessions = SessionStore(memory_store, EventEmitter(memory_store))

    runtime = AgentRuntime(
        sessions,
        ConfigCredentialResolver(app.providers, timeout_seconds=app.provider_timeout_seconds, environ=environ),
        relay=StreamRelay(open_timeout_seconds=app.transport_open_timeout_seconds),
        provider_factory=provider_factory,
        provider_max_attempts=app.provider_max_attempts,
        history_window=app.history_window,
    )

    if app.resume_session_id:
        session = sessions.get_session(app.resume_session_id)
        if session is None:
            memory_store.close()
            raise ValueError(f"Resume session not found: {app.resume_session_id}")
        active_session_id = session.id
        agent = get_agent(session.agent_slug)
    else:
        active_session_id = runtime.open_session(
            agent.slug,
            user_id=app.user_id,
            organization_id=app.organization_id,
        )

    return AppRuntime(
        runtime=runtime,
        memory_store=memory_store,
        agent_slug=agent.slug,
        active_session_id=active_session_id,
        log_descriptions=log_descriptions,
    )
