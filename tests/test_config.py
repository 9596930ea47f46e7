"""Tests for configuration loading."""

import json
from pathlib import Path

import pytest

from mneme.config import (
    ConfigStore,
    LLMConfig,
    MnemeConfig,
    NudgeConfig,
    load_config,
    save_config,
)


def write(path: Path, data) -> Path:
    path.write_text(json.dumps(data) if not isinstance(data, str) else data)
    return path


class TestLoadConfig:
    def test_missing_file_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "missing.json")

        assert config == MnemeConfig()
        assert config.llm.use_tools is True
        assert config.nudge.enabled is False

    def test_env_path(self, tmp_path: Path, monkeypatch):
        path = write(tmp_path / "c.json", {"llm": {"model": "other"}})
        monkeypatch.setenv("MNEME_CONFIG", str(path))

        assert load_config().llm.model == "other"

    def test_sections_parsed(self, tmp_path: Path):
        path = write(
            tmp_path / "c.json",
            {
                "persona": {"chatbot_name": "Iris", "about": "A poet", "max_stm": 20},
                "llm": {"temperature": 0.9, "reason": True},
                "memory": {"qdrant_url": "http://localhost:6333"},
                "nudge": {"enabled": True, "delay": 60},
            },
        )

        config = load_config(path)

        builder = config.prompt_builder()
        assert builder.chatbot_name == "Iris"
        assert builder.user_name == "User"
        assert builder.max_stm == 20
        assert config.llm.temperature == 0.9
        assert config.llm.reason is True
        assert config.memory.qdrant_url == "http://localhost:6333"
        assert config.nudge == NudgeConfig(enabled=True, delay=60)

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[1, 2]",
            json.dumps({"llm": {"unknown_field": 1}}),
            json.dumps({"nudge": {"delay": 0}}),
            json.dumps({"persona": {"chatbot_name": "X", "user_name": "Y", "timezone": "Nowhere/Land"}}),
        ],
    )
    def test_invalid_falls_back_to_defaults(self, tmp_path: Path, content: str):
        path = write(tmp_path / "c.json", content)

        assert load_config(path) == MnemeConfig()

    def test_non_object_section_ignored(self, tmp_path: Path):
        path = write(tmp_path / "c.json", {"llm": "fast", "nudge": {"enabled": True}})

        config = load_config(path)

        assert config.llm == LLMConfig()
        assert config.nudge.enabled is True


class TestPromptBuilder:
    def test_transport_name_used_when_persona_has_none(self):
        config = MnemeConfig(persona={"chatbot_name": "Iris"})

        assert config.prompt_builder("Ana").user_name == "Ana"

    def test_persona_user_name_wins(self):
        config = MnemeConfig(persona={"chatbot_name": "Iris", "user_name": "Captain"})

        assert config.prompt_builder("Ana").user_name == "Captain"


class TestSamplingParams:
    def test_omits_unset(self):
        assert LLMConfig().sampling_params() == {}

    def test_includes_set(self):
        params = LLMConfig(temperature=0.5, top_p=0.9).sampling_params()

        assert params == {"temperature": 0.5, "top_p": 0.9}

    def test_invalid_max_turns(self):
        with pytest.raises(ValueError):
            LLMConfig(max_turns=0)


class TestSaveAndStore:
    def test_save_then_load(self, tmp_path: Path):
        path = tmp_path / "nested" / "config.json"
        config = MnemeConfig(
            persona={"chatbot_name": "Iris", "likes": ["tea"]},
            nudge=NudgeConfig(enabled=True, delay=120),
        )

        save_config(config, path)
        loaded = load_config(path)

        assert loaded.prompt_builder().likes == ("tea",)
        assert loaded.nudge.delay == 120

    def test_store_rereads_file(self, tmp_path: Path):
        path = write(tmp_path / "c.json", {"llm": {"model": "first"}})
        store = ConfigStore(path)

        assert store.load().llm.model == "first"
        write(path, {"llm": {"model": "second"}})
        assert store.load().llm.model == "second"
