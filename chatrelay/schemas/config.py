"""Configuration schemas.

Loaded from chatrelay/config/defaults.toml (or a user-supplied TOML
file) by chatrelay.providers.registry.load_config().
"""

from __future__ import annotations

from pydantic import BaseModel, Field

DEFAULT_PREAMBLE = (
    "You are playing the persona of {name}. {persona} Stay in character."
)


class ModelConfig(BaseModel):
    """Upstream completion model used for every conversation."""

    provider: str = Field(description="Provider identifier (e.g. 'openai', 'anthropic')")
    model: str = Field(description="LiteLLM model identifier")
    display_name: str = Field(default="", description="Human-friendly model name")
    api_key_env: str = Field(description="Environment variable holding the API key")
    api_base: str = Field(default="", description="Custom API base URL (empty = provider default)")
    max_tokens: int = Field(default=4096, gt=0, description="Completion token cap")
    timeout: int = Field(default=120, gt=0, description="Upstream timeout in seconds")


class ServerConfig(BaseModel):
    """HTTP server and storage settings."""

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8000, gt=0, lt=65536)
    db_path: str = Field(
        default="~/.chatrelay/chat.db", description="SQLite transcript database",
    )
    seed: bool = Field(default=True, description="Insert default characters into an empty store")


class PersonaConfig(BaseModel):
    """System preamble construction."""

    preamble: str = Field(
        default=DEFAULT_PREAMBLE,
        description="Template with {name} and {persona} placeholders",
    )


class RelayConfig(BaseModel):
    """Top-level configuration."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    model: ModelConfig
    persona: PersonaConfig = Field(default_factory=PersonaConfig)
