from agent_turn_pipeline.agents.registry import all_agents, get_agent

__all__ = ["all_agents", "get_agent"]
