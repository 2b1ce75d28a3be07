"""
Agent Registry for Rune.

This module defines the registry of AI agents used by the engine, their
system prompts and user prompt templates. Prompts can be overridden per agent
from the ``agents.definitions`` section of config.yaml.
"""

import logging
from typing import Any, Dict, List, Optional
from dataclasses import dataclass

from ..config import config


@dataclass
class AgentConfig:
    """
    Configuration for an AI agent.

    Both prompts are ``str.format`` templates; literal braces are doubled.
    """
    name: str
    description: str
    system_prompt: str
    user_prompt_template: str
    timeout: float = 60.0

    def render_system_prompt(self, **kwargs: Any) -> str:
        return self._render(self.system_prompt, kwargs)

    def render_user_prompt(self, **kwargs: Any) -> str:
        return self._render(self.user_prompt_template, kwargs)

    def _render(self, template: str, values: Dict[str, Any]) -> str:
        try:
            return template.format(**values)
        except KeyError as e:
            raise ValueError(f"Missing template variable {e} for agent '{self.name}'")
        except (IndexError, ValueError) as e:
            raise ValueError(f"Failed to render template for agent '{self.name}': {e}")


class AgentRegistry:
    """
    Registry of all available AI agents and their configurations.
    """

    def __init__(self, definitions: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Initialize the agent registry with default agents.

        Args:
            definitions: Optional per-agent overrides, keyed by agent name
        """
        self._agents: Dict[str, AgentConfig] = {}
        self._register_default_agents()
        if definitions:
            self.load_definitions(definitions)

    def _register_default_agents(self):
        """Register the default agents used by Rune."""

        # Extraction Agent - entities and relationships from a chunk of conversation
        self.register_agent(AgentConfig(
            name="extraction",
            description="Extracts entities and relationships from session text",
            system_prompt="""You are an entity extractor for a book-writing assistant.

Given a passage of text from a conversation about a book, extract all meaningful entities and relationships.

Entity types:
- "person": a named person, character, or clearly referenced individual
- "place": a named location, city, building, or geographic reference
- "theme": an abstract concept, emotion, or recurring motif
- "event": a specific happening, incident, or milestone

Rules:
- Only extract entities that are meaningful to the book's content.
- Do not extract the assistant itself or generic conversational references.
- Give each entity a brief description based on what the text says.
- For relationships, describe how two entities are connected.
- If the same entity is mentioned in several ways, use a single canonical name.

Respond with ONLY a JSON object, no other text:
{{
  "entities": [
    {{"name": "Entity Name", "type": "person|place|theme|event", "description": "Brief description"}}
  ],
  "relationships": [
    {{"from": "Entity A", "to": "Entity B", "type": "relationship_type", "description": "How they relate"}}
  ]
}}

If no entities are found, return: {{"entities": [], "relationships": []}}""",
            user_prompt_template="{text}"
        ))

        # Synthesis Agent - session summary and follow-up items
        self.register_agent(AgentConfig(
            name="synthesis",
            description="Summarizes a session and proposes backlog items and workspace files",
            system_prompt="""You analyze the transcript of a conversation session about the book "{book_title}" ({book_type}).

Produce a JSON synthesis with four sections:

1. "summary": 2-4 sentences on what was discussed in this session.
2. "entities": people, places, themes and events mentioned, each with "name", "type" (person, place, theme, event) and "description".
3. "backlog_items": things to follow up on in future sessions, each with
   - "type": one of "question" (unanswered), "contradiction" (conflicting facts), "thin_spot" (needs more detail), "unexplored" (mentioned but not developed), "review" (needs editing attention), "idea" (creative suggestion)
   - "content": a clear description of the follow-up
   - "priority": optional integer from 1 (low) to 5 (urgent)
4. "workspace_files": material worth filing, each with "room" (brainstorm, drafts, publish), "category", "title" and "content".

Contradictions must be specific: "Author said X in an earlier session but Y here."

Respond with ONLY a JSON object:
{{"summary": "...", "entities": [], "backlog_items": [], "workspace_files": []}}""",
            user_prompt_template="Here is the session transcript to analyze:\n\n{transcript}"
        ))

    def register_agent(self, config: AgentConfig) -> None:
        """
        Register a new agent configuration.

        Args:
            config: The agent configuration to register
        """
        self._agents[config.name] = config

    def load_definitions(self, definitions: Dict[str, Dict[str, Any]]) -> None:
        """
        Override or add agents from configuration.

        Fields missing from a definition keep the default agent's value; a
        new agent must define both prompts. Invalid definitions are skipped.

        Args:
            definitions: Mapping of agent name to its fields
        """
        for agent_name, definition in definitions.items():
            base = self._agents.get(agent_name)
            try:
                if not isinstance(definition, dict):
                    raise ValueError("definition must be a mapping")
                if base is None:
                    for field_name in ("system_prompt", "user_prompt_template"):
                        if field_name not in definition:
                            raise ValueError(f"Missing required field '{field_name}'")

                self.register_agent(AgentConfig(
                    name=agent_name,
                    description=definition.get("description", base.description if base else ""),
                    system_prompt=definition.get("system_prompt", base.system_prompt if base else ""),
                    user_prompt_template=definition.get(
                        "user_prompt_template", base.user_prompt_template if base else ""
                    ),
                    timeout=float(definition.get("timeout", base.timeout if base else 60.0))
                ))
                logging.info(f"Loaded agent definition: {agent_name}")

            except (TypeError, ValueError) as e:
                logging.error(f"Failed to load agent definition '{agent_name}': {e}")

    def get_agent(self, name: str) -> Optional[AgentConfig]:
        """
        Get an agent configuration by name.

        Args:
            name: The name of the agent

        Returns:
            The agent configuration, or None if not found
        """
        return self._agents.get(name)

    def list_agents(self) -> List[str]:
        """
        Get a list of all registered agent names.

        Returns:
            List of agent names
        """
        return list(self._agents.keys())


# Global agent registry instance
agent_registry = AgentRegistry(config.get("agents.definitions", {}))
