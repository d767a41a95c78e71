"""TOML configuration loader.

Loads server, model and persona settings from defaults.toml (or a
user-supplied file) into a validated RelayConfig.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

from chatrelay.schemas.config import (
    ModelConfig,
    PersonaConfig,
    RelayConfig,
    ServerConfig,
)

# Default config directory relative to the chatrelay package
_CONFIG_DIR = Path(__file__).parent.parent / "config"


def default_config_path() -> Path:
    return _CONFIG_DIR / "defaults.toml"


def load_config(config_path: Path | None = None) -> RelayConfig:
    """Load the relay configuration from a TOML file.

    Args:
        config_path: Path to the TOML file. Defaults to chatrelay/config/defaults.toml.

    Returns:
        RelayConfig with values from the file; optional sections fall back
        to model defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the [model] section is missing.
    """
    path = config_path or default_config_path()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    model_section = raw.get("model")
    if not model_section or not isinstance(model_section, dict):
        raise ValueError(f"No [model] section found in {path}")

    return RelayConfig(
        server=ServerConfig(**raw.get("server", {})),
        model=ModelConfig(**model_section),
        persona=PersonaConfig(**raw.get("persona", {})),
    )
