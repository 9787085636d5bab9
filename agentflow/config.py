"""Shared AgentFlow configuration utilities.

Centralises reading of ~/.agentflow/configuration.json so that the runtime,
the LLM provider and the storage layer resolve defaults the same way.
Environment variables take precedence over the file.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

AGENTFLOW_HOME = Path.home() / ".agentflow"
AGENTFLOW_CONFIG_FILE = AGENTFLOW_HOME / "configuration.json"

DEFAULT_OLLAMA_MODEL = "gemini-3-flash-preview"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_MAX_TOKENS = 2048
DEFAULT_TEMPERATURE = 0.7

# Serialised run context appended to prompts is cut at this many characters
CONTEXT_CHAR_LIMIT = 12_000
# Agent.working_memory keeps at most this many characters
WORKING_MEMORY_LIMIT = 800
# Hard cap on generate steps in the action reflect loop
MAX_REFLECT_ITERATIONS = 2

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------


def get_agentflow_config() -> dict[str, Any]:
    """Load configuration from ~/.agentflow/configuration.json."""
    if not AGENTFLOW_CONFIG_FILE.exists():
        return {}
    try:
        with open(AGENTFLOW_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the LiteLLM model string (e.g. 'ollama/llama3')."""
    env_model = os.environ.get("AGENTFLOW_MODEL")
    if env_model:
        return env_model
    llm = get_agentflow_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return f"ollama/{DEFAULT_OLLAMA_MODEL}"


def get_api_base() -> str | None:
    """Return the model endpoint; Ollama's local server unless configured otherwise."""
    env_base = os.environ.get("OLLAMA_BASE_URL")
    if env_base:
        return env_base
    return get_agentflow_config().get("llm", {}).get("api_base", DEFAULT_OLLAMA_BASE_URL)


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_agentflow_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_storage_path() -> Path:
    """Return the base directory for workflow/execution records."""
    env_path = os.environ.get("AGENTFLOW_STORAGE_PATH")
    if env_path:
        return Path(env_path)
    configured = get_agentflow_config().get("storage", {}).get("path")
    return Path(configured) if configured else AGENTFLOW_HOME / "storage"


# ---------------------------------------------------------------------------
# RuntimeConfig – shared by the runtime facade and executors
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Engine configuration loaded from ~/.agentflow/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    api_base: str | None = field(default_factory=get_api_base)
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = field(default_factory=get_max_tokens)
    storage_path: Path = field(default_factory=get_storage_path)
    context_char_limit: int = CONTEXT_CHAR_LIMIT
    working_memory_limit: int = WORKING_MEMORY_LIMIT
    max_reflect_iterations: int = MAX_REFLECT_ITERATIONS
