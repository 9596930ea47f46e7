"""Configuration loader.

Loads settings from ``~/.mneme/config.json`` (or ``$MNEME_CONFIG``).
Secrets stay in the environment. The file is re-read on every
``ConfigStore.load()`` call so edits apply to the next session created.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfoNotFoundError

from .chat.prompt import SystemPromptBuilder

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".mneme" / "config.json"
DEFAULT_MODEL = "llama-3.3-70b-versatile"


@dataclass
class LLMConfig:
    """Completion settings.

    Attributes:
        model: Groq model name.
        temperature/max_tokens/top_p/frequency_penalty/presence_penalty:
            Optional sampling parameters, omitted from requests when None.
        use_tools: Offer the memory_recall and memory_store tools.
        reason: Ask the model to think in <think> tags before replying.
        force_lowercase: Lowercase every reply.
        max_turns: Completion rounds allowed per reply (tool calls included).
        recall_limit: Facts retrieved per user message.
    """

    model: str = DEFAULT_MODEL
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    use_tools: bool = True
    reason: bool = False
    force_lowercase: bool = False
    max_turns: int = 5
    recall_limit: int = 5

    def __post_init__(self) -> None:
        if self.max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        if self.recall_limit < 0:
            raise ValueError("recall_limit must not be negative")

    def sampling_params(self) -> dict[str, Any]:
        params = {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
        }
        return {k: v for k, v in params.items() if v is not None}


@dataclass
class MemoryConfig:
    """Vector store and embedding settings.

    ``qdrant_url`` of ``":memory:"`` keeps everything in process.
    """

    qdrant_url: str = ":memory:"
    qdrant_api_key: str | None = None
    collection: str = "mneme_memories"
    embedding_model: str = "all-MiniLM-L6-v2"


@dataclass
class NudgeConfig:
    """Proactive message settings (seconds of user silence)."""

    enabled: bool = False
    delay: float = 3600.0

    def __post_init__(self) -> None:
        if self.delay <= 0:
            raise ValueError("nudge delay must be positive")


@dataclass
class MnemeConfig:
    """Complete configuration snapshot."""

    persona: dict[str, Any] = field(
        default_factory=lambda: {"chatbot_name": "Mneme", "user_name": "User"}
    )
    llm: LLMConfig = field(default_factory=LLMConfig)
    memory: MemoryConfig = field(default_factory=MemoryConfig)
    nudge: NudgeConfig = field(default_factory=NudgeConfig)

    def prompt_builder(self, user_name: str | None = None) -> SystemPromptBuilder:
        """Build the persona's prompt builder, optionally for a specific user."""
        data = dict(self.persona)
        data.setdefault("chatbot_name", "Mneme")
        data.setdefault("user_name", "User")
        builder = SystemPromptBuilder.from_dict(data)
        if user_name and "user_name" not in self.persona:
            builder = builder.with_names(user_name=user_name)
        return builder


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name, {})
    if not isinstance(section, dict):
        logger.warning("Config section '%s' must be an object, ignoring it", name)
        return {}
    return section


def _parse_config(data: dict[str, Any]) -> MnemeConfig:
    """Parse a config dictionary into MnemeConfig."""
    config = MnemeConfig()

    persona = _section(data, "persona")
    if persona:
        config.persona = persona
        # fail early on a bad persona rather than on first message
        config.prompt_builder()

    llm = _section(data, "llm")
    if llm:
        config.llm = LLMConfig(**llm)

    memory = _section(data, "memory")
    if memory:
        config.memory = MemoryConfig(**memory)

    nudge = _section(data, "nudge")
    if nudge:
        config.nudge = NudgeConfig(**nudge)

    return config


def load_config(config_path: Path | None = None) -> MnemeConfig:
    """Load MnemeConfig from a JSON file.

    The file should look like::

        {
          "persona": {"chatbot_name": "Mneme", "about": "...", "max_stm": 50},
          "llm": {"model": "llama-3.3-70b-versatile", "temperature": 0.8},
          "memory": {"qdrant_url": "http://localhost:6333"},
          "nudge": {"enabled": true, "delay": 3600}
        }

    Missing, unreadable or invalid files fall back to defaults.
    """
    path = config_path or Path(os.getenv("MNEME_CONFIG", DEFAULT_CONFIG_PATH))

    if not path.exists():
        logger.debug("No config file at %s, using defaults", path)
        return MnemeConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        logger.warning("Invalid JSON in %s: %s. Using defaults.", path, e)
        return MnemeConfig()
    except OSError as e:
        logger.warning("Cannot read %s: %s. Using defaults.", path, e)
        return MnemeConfig()

    if not isinstance(data, dict):
        logger.warning("Config in %s must be a JSON object. Using defaults.", path)
        return MnemeConfig()

    try:
        return _parse_config(data)
    except (TypeError, ValueError, ZoneInfoNotFoundError) as e:
        logger.warning("Invalid config in %s: %s. Using defaults.", path, e)
        return MnemeConfig()


def save_config(config: MnemeConfig, config_path: Path | None = None) -> None:
    """Write the persisted parts of a config to disk."""
    path = config_path or Path(os.getenv("MNEME_CONFIG", DEFAULT_CONFIG_PATH))
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "persona": dict(config.persona),
        "llm": vars(config.llm),
        "memory": vars(config.memory),
        "nudge": vars(config.nudge),
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


class ConfigStore:
    """Hands out a fresh configuration snapshot on every load."""

    def __init__(self, config_path: Path | None = None) -> None:
        self.config_path = config_path

    def load(self) -> MnemeConfig:
        return load_config(self.config_path)
