"""
AI Agent runner for Rune.

This module handles communication with Ollama and runs the extraction and
synthesis agents. Every call is logged to the database, when one is attached,
so it can be inspected and reproduced later.
"""

import httpx
import json
import time
from typing import Optional
import logging

from ..config import config
from ..database import DatabaseManager
from ..errors import AgentCallError, ExtractionParseError, PersistenceError
from ..models import BookType, ExtractionResult, SynthesisResult
from .parsing import parse_extraction, parse_synthesis
from .registry import agent_registry, AgentRegistry, AgentConfig


class AgentRunner:
    """
    Manages communication with Ollama and runs AI agents.
    """

    def __init__(self, ollama_host: Optional[str] = None, model: Optional[str] = None,
                 database_manager: Optional[DatabaseManager] = None,
                 registry: Optional[AgentRegistry] = None):
        """
        Initialize the agent runner.

        Args:
            ollama_host: The Ollama server URL (defaults to config value)
            model: The model name to use for inference (defaults to config value)
            database_manager: Optional database manager for call logging
            registry: Agent registry to take prompts from (defaults to the global one)
        """
        self.ollama_host = ollama_host or config.ollama_host
        self.model = model or config.model_name
        self.client = httpx.Client(timeout=config.ollama_timeout)
        self.db = database_manager
        self.registry = registry or agent_registry

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.client.close()

    def _get_agent(self, name: str) -> AgentConfig:
        agent_config = self.registry.get_agent(name)
        if not agent_config:
            raise ValueError(f"Agent '{name}' not found in registry")
        return agent_config

    def _call_ollama_sync(
        self,
        prompt: str,
        system_prompt: str = "",
        agent_name: str = "unknown",
        input_data: str = "",
        timeout: Optional[float] = None,
        book_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> str:
        """
        Make a request to Ollama and log it.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt for the agent
            agent_name: Name of the agent making the call
            input_data: Original input data for logging
            timeout: Request timeout override
            book_id: Related book ID (optional)
            session_id: Related session ID (optional)

        Returns:
            The model's response text

        Raises:
            AgentCallError: If Ollama cannot be reached or returns an error status
        """
        start_time = time.time()
        success = False
        error_message = None
        raw_response = ""

        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0}
        }

        if system_prompt:
            payload["system"] = system_prompt

        if config.json_mode:
            payload["format"] = "json"

        try:
            response = self.client.post(
                f"{self.ollama_host}/api/generate",
                json=payload,
                timeout=timeout or config.ollama_timeout
            )
            response.raise_for_status()

            result = response.json()
            if not isinstance(result, dict):
                raise ValueError(f"expected an object, got {type(result).__name__}")
            raw_response = result.get("response", "")
            success = True

            return raw_response

        except httpx.HTTPStatusError as e:
            error_message = f"Ollama request failed: {e}"
            raise AgentCallError(error_message) from e
        except httpx.RequestError as e:
            error_message = f"Failed to connect to Ollama: {e}"
            raise AgentCallError(error_message) from e
        except ValueError as e:
            error_message = f"Ollama returned an unusable body: {e}"
            raise AgentCallError(error_message) from e
        finally:
            execution_time_ms = int((time.time() - start_time) * 1000)

            if self.db:
                try:
                    self.db.log_ai_agent_call(
                        agent_name=agent_name,
                        input_data=input_data,
                        system_prompt=system_prompt,
                        user_prompt=prompt,
                        model_name=self.model,
                        raw_response=raw_response,
                        success=success,
                        error_message=error_message,
                        execution_time_ms=execution_time_ms,
                        book_id=book_id,
                        session_id=session_id
                    )
                except (PersistenceError, RuntimeError) as log_error:
                    logging.warning(f"Failed to log AI agent call: {log_error}")

    def run_extraction_agent(
        self,
        text: str,
        book_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> ExtractionResult:
        """
        Run the Extraction Agent on a chunk of session text.

        Args:
            text: Conversation text to extract from
            book_id: Book the text belongs to, for call logging
            session_id: Session the text came from, for call logging

        Returns:
            Validated entity and relationship candidates

        Raises:
            AgentCallError: If the model cannot be called
            ExtractionParseError: If the response cannot be parsed
        """
        agent_config = self._get_agent("extraction")

        response = self._call_ollama_sync(
            prompt=agent_config.render_user_prompt(text=text),
            system_prompt=agent_config.render_system_prompt(),
            agent_name="extraction",
            input_data=json.dumps({"text": text}),
            timeout=agent_config.timeout,
            book_id=book_id,
            session_id=session_id
        )

        try:
            result = parse_extraction(response)
        except ExtractionParseError:
            logging.warning(f"Failed to parse Extraction Agent response: {response[:200]!r}")
            raise

        logging.info(
            f"Extraction Agent found {len(result.entities)} entities and "
            f"{len(result.relationships)} relationships"
        )
        return result

    def run_synthesis_agent(
        self,
        transcript: str,
        book_title: str,
        book_type: BookType = BookType.MEMOIR,
        book_id: Optional[str] = None,
        session_id: Optional[str] = None
    ) -> SynthesisResult:
        """
        Run the Synthesis Agent on a full session transcript.

        Args:
            transcript: The session's raw transcript
            book_title: Title of the book being written
            book_type: memoir, fiction or nonfiction

        Returns:
            Validated summary, backlog items and workspace files

        Raises:
            AgentCallError: If the model cannot be called
            ExtractionParseError: If the response cannot be parsed
        """
        agent_config = self._get_agent("synthesis")

        response = self._call_ollama_sync(
            prompt=agent_config.render_user_prompt(transcript=transcript),
            system_prompt=agent_config.render_system_prompt(
                book_title=book_title,
                book_type=BookType(book_type).value
            ),
            agent_name="synthesis",
            input_data=json.dumps({"book_title": book_title, "transcript": transcript}),
            timeout=agent_config.timeout,
            book_id=book_id,
            session_id=session_id
        )

        result = parse_synthesis(response)
        logging.info(
            f"Synthesis Agent proposed {len(result.backlog_items)} backlog items and "
            f"{len(result.workspace_files)} workspace files"
        )
        return result
