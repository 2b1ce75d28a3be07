"""
Configuration management for Rune.

This module handles loading and accessing configuration values from config.yaml.
Every setting has a default so the engine runs without a configuration file.
"""

import yaml
from pathlib import Path
from typing import Any, Dict
import logging

from .models.backlog import MIN_PRIORITY, MAX_PRIORITY


class ConfigManager:
    """
    Manages configuration loading and access for Rune.
    """

    def __init__(self, config_path: str = "config.yaml"):
        """
        Initialize the configuration manager.

        Args:
            config_path: Path to the configuration file
        """
        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        try:
            if not self.config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._config = yaml.safe_load(f) or {}

            logging.info(f"Configuration loaded from {self.config_path}")

        except (OSError, yaml.YAMLError) as e:
            logging.warning(f"Using default configuration: {e}")
            self._config = self._get_default_config()

    def _get_default_config(self) -> Dict[str, Any]:
        """Get default configuration values as fallback."""
        return {
            "ai": {
                "ollama_host": "http://localhost:11434",
                "model": "llama3.1:8b",
                "timeout": 60.0,
                "json_mode": True
            },
            "database": {
                "filename": "rune.db"
            },
            "paths": {
                "log_file": "rune.log"
            },
            "logging": {
                "level": "INFO",
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            },
            "backlog": {
                "default_priority": 1,
                "seed_unresolved_after_synthesis": True
            }
        }

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Args:
            key_path: Dot-separated path to the configuration value (e.g., "ai.model")
            default: Default value if key is not found

        Returns:
            The configuration value

        Examples:
            config.get("ai.model")  # Returns "llama3.1:8b"
            config.get("backlog.default_priority")  # Returns 1
        """
        keys = key_path.split('.')
        value = self._config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    # Convenience properties for commonly used values

    @property
    def ollama_host(self) -> str:
        """Get Ollama host URL."""
        return self.get("ai.ollama_host", "http://localhost:11434")

    @property
    def model_name(self) -> str:
        """Get AI model name."""
        return self.get("ai.model", "llama3.1:8b")

    @property
    def ollama_timeout(self) -> float:
        """Get Ollama timeout."""
        return self.get("ai.timeout", 60.0)

    @property
    def json_mode(self) -> bool:
        """Whether to ask Ollama for JSON-formatted output."""
        return self.get("ai.json_mode", True)

    @property
    def database_filename(self) -> str:
        """Get database filename."""
        return self.get("database.filename", "rune.db")

    @property
    def log_filename(self) -> str:
        """Get log file name."""
        return self.get("paths.log_file", "rune.log")

    @property
    def default_priority(self) -> int:
        """Base priority given to new backlog items, between 1 and 5."""
        value = self.get("backlog.default_priority", MIN_PRIORITY)
        if isinstance(value, bool) or not isinstance(value, int) or not MIN_PRIORITY <= value <= MAX_PRIORITY:
            logging.warning(f"Invalid backlog.default_priority {value!r}, using {MIN_PRIORITY}")
            return MIN_PRIORITY
        return value

    @property
    def seed_unresolved_after_synthesis(self) -> bool:
        """Whether synthesis also seeds the backlog from unresolved entities."""
        return self.get("backlog.seed_unresolved_after_synthesis", True)


# Global configuration instance
config = ConfigManager()
