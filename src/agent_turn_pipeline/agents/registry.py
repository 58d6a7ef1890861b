from __future__ import annotations

from agent_turn_pipeline.agents.activity import RADAR
from agent_turn_pipeline.agents.builders import CADENCE, ECHO, FORMA, SCRIBE
from agent_turn_pipeline.agents.documents import PARITY
from agent_turn_pipeline.agents.triage import LYNK, RELAY
from agent_turn_pipeline.errors import ConfigurationError
from agent_turn_pipeline.prompt import AgentDescriptor

_AGENTS: dict[str, AgentDescriptor] = {
    agent.slug: agent
    for agent in (CADENCE, FORMA, ECHO, SCRIBE, RELAY, LYNK, PARITY, RADAR)
}


def get_agent(slug: str) -> AgentDescriptor:
    agent = _AGENTS.get((slug or "").strip().lower())
    if agent is None:
        raise ConfigurationError(f"Unknown agent: {slug!r}. Available: {', '.join(sorted(_AGENTS))}")
    return agent


def all_agents() -> list[AgentDescriptor]:
    return list(_AGENTS.values())
