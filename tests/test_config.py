"""
Tests for configuration module.
"""

import logging
import os
from pathlib import Path
from unittest.mock import patch

from agent_runtime.config import Settings
from agent_runtime.logging_setup import configure_logging


def test_settings_default_values():
    """Test that settings have sensible defaults."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.app_name == "Agent-Runtime"
        assert settings.default_provider == "anthropic"
        assert settings.max_tool_iterations == 100
        assert settings.max_history_messages == 50
        assert settings.max_session_messages == 40
        assert settings.compact_keep_recent == 20
        assert settings.compaction_timeout_secs == 180
        assert settings.memory_token_budget == 1500


def test_settings_from_env():
    """Test loading settings from environment variables."""
    env = {
        "ANTHROPIC_API_KEY": "test_anthropic_key",
        "DEFAULT_MODEL": "claude-opus-4",
        "MAX_TOOL_ITERATIONS": "7",
        "DATA_DIR": "/tmp/agent-data",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)

        assert settings.anthropic_api_key == "test_anthropic_key"
        assert settings.default_model == "claude-opus-4"
        assert settings.max_tool_iterations == 7
        assert settings.runtime_dir == Path("/tmp/agent-data/runtime")


def test_non_positive_limits_fall_back_to_defaults():
    """Zero or negative loop limits mean 'use the default'."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None, max_tool_iterations=0, memory_token_budget=-5)

        assert settings.max_tool_iterations == 100
        assert settings.memory_token_budget == 1500


def test_control_chat_ids_list():
    """Test parsing control chat IDs."""
    with patch.dict(os.environ, {"CONTROL_CHAT_IDS": " 100, -200 ,300"}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.control_chat_ids_list == [100, -200, 300]


def test_control_chat_ids_empty():
    """Test empty control chat list."""
    with patch.dict(os.environ, {}, clear=True):
        settings = Settings(_env_file=None)

        assert settings.control_chat_ids_list == []


def test_get_llm_config():
    """Test getting LLM configuration."""
    env = {
        "ANTHROPIC_API_KEY": "test_key",
        "DEFAULT_PROVIDER": "anthropic",
    }

    with patch.dict(os.environ, env, clear=True):
        settings = Settings(_env_file=None)
        config = settings.get_llm_config()

        assert config.provider == "anthropic"
        assert config.api_key == "test_key"
        assert "claude" in config.model.lower()


def test_get_llm_config_openai():
    """Test getting OpenAI LLM configuration."""
    with patch.dict(os.environ, {"OPENAI_API_KEY": "test_openai_key"}, clear=True):
        settings = Settings(_env_file=None)
        config = settings.get_llm_config("openai")

        assert config.provider == "openai"
        assert config.api_key == "test_openai_key"
        assert "gpt" in config.model.lower()


def test_get_llm_config_openrouter_base_url():
    """Test OpenRouter config carries its base URL."""
    with patch.dict(os.environ, {"OPENROUTER_API_KEY": "or_key"}, clear=True):
        settings = Settings(_env_file=None)
        config = settings.get_llm_config("openrouter")

        assert config.base_url == "https://openrouter.ai/api/v1"
        assert config.api_key == "or_key"


def test_configure_logging_sets_root_level():
    """Test configure_logging applies the log level."""
    configure_logging("warning", json_output=True)

    assert logging.getLogger().level == logging.WARNING
