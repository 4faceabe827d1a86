"""Configuration management for the NURA agent.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached for performance.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Conversational backend configuration."""
    provider: str = Field(default="gemini", description="LLM provider: gemini, openai, mock")
    model: str = Field(default="gemini-2.5-flash", description="Model name")
    api_key: Optional[str] = Field(
        default=None,
        description="API key",
        validation_alias=AliasChoices("LLM_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY", "api_key"),
    )
    api_base: Optional[str] = Field(default=None, description="API base URL")
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=1024, gt=0)
    timeout_seconds: float = Field(default=60.0, gt=0, description="Per-call backend timeout")

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True
    )


class AgentSettings(BaseSettings):
    """Orchestration loop configuration."""
    max_rounds: int = Field(default=8, gt=0, description="Maximum tool-exchange rounds per submission")
    tool_timeout_seconds: float = Field(default=10.0, gt=0)
    concurrent_tools: bool = Field(default=True, description="Run a turn's tool calls concurrently")
    fallback_text: str = Field(default="I have completed the task.")
    incomplete_text: str = Field(
        default="I'm sorry, I was unable to complete that request. Please try again."
    )
    system_prompt: Optional[str] = Field(default=None, description="Override the default system prompt")
    tool_latency_seconds: float = Field(default=0.0, ge=0, description="Simulated clinic tool latency")

    model_config = SettingsConfigDict(
        env_prefix="AGENT_",
        env_file=".env",
        extra="ignore"
    )


class ServerSettings(BaseSettings):
    """HTTP host configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Conversation
    conversation_ttl_minutes: int = Field(default=60)
    cleanup_interval_seconds: int = Field(default=300)

    # Caller-side retry of rate-limited submissions
    retry_attempts: int = Field(default=3, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SERVER_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    llm: LLMSettings = Field(default_factory=LLMSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)

    model_config = SettingsConfigDict(
        env_prefix="NURA_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        data = load_yaml_config(path)
        return cls(**data)


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("NURA_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
