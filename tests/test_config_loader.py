"""Tests for chatrelay.providers.registry: TOML config loading."""

from pathlib import Path

import pytest

from chatrelay.providers.registry import default_config_path, load_config
from chatrelay.schemas.config import DEFAULT_PREAMBLE

# Path to the real config file shipped with the package
_CONFIG_DIR = Path(__file__).parent.parent / "chatrelay" / "config"


class TestLoadConfig:
    def test_loads_shipped_defaults(self):
        config = load_config(_CONFIG_DIR / "defaults.toml")
        assert config.server.port == 8000
        assert config.server.seed is True
        assert config.model.api_key_env == "OPENAI_API_KEY"
        assert config.persona.preamble == DEFAULT_PREAMBLE

    def test_default_path_is_shipped_file(self):
        assert default_config_path().name == "defaults.toml"
        assert load_config().model.model == load_config(_CONFIG_DIR / "defaults.toml").model.model

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            load_config(tmp_path / "nope.toml")

    def test_missing_model_section(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text('[server]\nport = 9000\n')
        with pytest.raises(ValueError, match=r"No \[model\] section"):
            load_config(path)

    def test_optional_sections_fall_back(self, tmp_path):
        path = tmp_path / "minimal.toml"
        path.write_text(
            '[model]\nprovider = "anthropic"\nmodel = "claude-haiku"\n'
            'api_key_env = "ANTHROPIC_API_KEY"\n'
        )
        config = load_config(path)
        assert config.server.host == "127.0.0.1"
        assert config.server.db_path == "~/.chatrelay/chat.db"
        assert config.model.max_tokens == 4096
        assert config.persona.preamble == DEFAULT_PREAMBLE

    def test_invalid_values_rejected(self, tmp_path):
        from pydantic import ValidationError

        path = tmp_path / "bad_port.toml"
        path.write_text(
            '[server]\nport = 0\n'
            '[model]\nprovider = "x"\nmodel = "y"\napi_key_env = "Z"\n'
        )
        with pytest.raises(ValidationError):
            load_config(path)
