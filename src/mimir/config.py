"""Configuration loader.

Loads settings from ~/.mimir/config.json, then applies environment
variable overrides (typically set through a .env file).
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from .memory.llm_client import (
    DEFAULT_GROQ_MODEL,
    DEFAULT_OLLAMA_MODEL,
    DEFAULT_OLLAMA_URL,
    DEFAULT_TIMEOUT,
    ENGINES,
)

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".mimir"
DEFAULT_CONFIG_PATH = DEFAULT_HOME / "config.json"
DEFAULT_DB_PATH = DEFAULT_HOME / "memory.db"

ENV_OVERRIDES = {
    "MIMIR_DB_PATH": "db_path",
    "MIMIR_LOG_DIR": "log_dir",
    "MIMIR_ENGINE": "engine",
    "OLLAMA_URL": "ollama_url",
    "OLLAMA_MODEL": "ollama_model",
    "GROQ_MODEL": "groq_model",
}


@dataclass
class MemoryConfig:
    """Configuration for the memory store and extraction.

    Attributes:
        db_path: SQLite database file.
        log_dir: Directory for JSONL logs (defaults to ``<db dir>/logs``).
        engine: Extraction engine: auto, ollama or groq.
        ollama_url: Base URL of the Ollama server.
        ollama_model: Model used with Ollama.
        groq_model: Model used with Groq.
        request_timeout: Seconds before an extraction request is abandoned.
        max_chunk_words: Word cap per chunk sent to the model.
        default_limit: Row limit for list and inject.
    """

    db_path: Path | None = None
    log_dir: Path | None = None
    engine: str = "auto"
    ollama_url: str = DEFAULT_OLLAMA_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL
    groq_model: str = DEFAULT_GROQ_MODEL
    request_timeout: float = DEFAULT_TIMEOUT
    max_chunk_words: int = 10_000
    default_limit: int = 100

    def __post_init__(self) -> None:
        """Validate config and set defaults."""
        self.db_path = Path(self.db_path).expanduser() if self.db_path else DEFAULT_DB_PATH
        if self.log_dir is None:
            self.log_dir = self.db_path.parent / "logs"
        else:
            self.log_dir = Path(self.log_dir).expanduser()

        try:
            self.request_timeout = float(self.request_timeout)
            self.max_chunk_words = int(self.max_chunk_words)
            self.default_limit = int(self.default_limit)
        except (TypeError, ValueError):
            raise ValueError(
                "request_timeout, max_chunk_words and default_limit must be numbers"
            ) from None

        if self.engine not in ENGINES:
            raise ValueError(f"engine must be one of: {', '.join(ENGINES)}")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        if self.max_chunk_words < 1:
            raise ValueError("max_chunk_words must be at least 1")
        if self.default_limit < 1:
            raise ValueError("default_limit must be at least 1")


def load_config(config_path: Path | None = None) -> MemoryConfig:
    """Load MemoryConfig from a JSON file plus environment overrides.

    The config file should have this structure:
    ```json
    {
      "memory": {
        "db_path": "~/.mimir/memory.db",
        "engine": "ollama",
        "ollama_model": "qwen3:8b",
        "request_timeout": 120
      }
    }
    ```

    Args:
        config_path: Path to config file. Uses DEFAULT_CONFIG_PATH if None.

    Returns:
        MemoryConfig instance with loaded values.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        except OSError as e:
            logger.warning("Cannot read %s: %s. Using defaults.", path, e)
    else:
        logger.debug("No config file at %s, using defaults", path)

    return _parse_config(data, os.environ)


def _parse_config(data: dict[str, Any], env: Any) -> MemoryConfig:
    """Parse config dictionary and environment into MemoryConfig."""
    section = data.get("memory", {}) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        section = {}

    known = {f.name for f in fields(MemoryConfig)}
    values = {k: v for k, v in section.items() if k in known}
    for unknown in sorted(set(section) - known):
        logger.warning("Ignoring unknown config key: memory.%s", unknown)

    for var, name in ENV_OVERRIDES.items():
        if env.get(var):
            values[name] = env[var]

    return MemoryConfig(**values)
