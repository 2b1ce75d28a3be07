"""AI agents for extraction and session synthesis."""

from .runner import AgentRunner
from .registry import agent_registry, AgentRegistry, AgentConfig
from .parsing import parse_json_response, parse_extraction, parse_synthesis

__all__ = [
    "AgentRunner",
    "agent_registry",
    "AgentRegistry",
    "AgentConfig",
    "parse_json_response",
    "parse_extraction",
    "parse_synthesis",
]
