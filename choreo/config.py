"""Configuration management for the orchestrator."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ModelConfig:
    """OpenAI or Azure OpenAI model configuration."""

    api_key: str
    model: str = "gpt-4o"
    endpoint: Optional[str] = None
    base_url: Optional[str] = None
    api_version: str = "2024-02-15-preview"
    max_concurrent: int = 50

    @property
    def is_azure(self) -> bool:
        return self.endpoint is not None


@dataclass(frozen=True)
class OrchestratorConfig:
    """Limits and defaults applied to every session."""

    max_tokens_per_turn: int = 4096
    max_tool_steps_per_turn: int = 16
    session_max_agents: int = 10
    session_max_messages: int = 1000
    skills_path: str = "skills"
    solo_turn_budget: int = 20
    duet_turn_budget: int = 15
    round_robin_turn_budget: int = 20
    hierarchical_turn_budget: int = 25
    phrase_completion: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> OrchestratorConfig:
        return cls(
            max_tokens_per_turn=int(os.getenv("CHOREO_MAX_TOKENS_PER_TURN", "4096")),
            max_tool_steps_per_turn=int(os.getenv("CHOREO_MAX_TOOL_STEPS", "16")),
            session_max_agents=int(os.getenv("CHOREO_SESSION_MAX_AGENTS", "10")),
            session_max_messages=int(os.getenv("CHOREO_SESSION_MAX_MESSAGES", "1000")),
            skills_path=os.getenv("CHOREO_SKILLS_PATH", "skills"),
            solo_turn_budget=int(os.getenv("CHOREO_SOLO_TURN_BUDGET", "20")),
            duet_turn_budget=int(os.getenv("CHOREO_DUET_TURN_BUDGET", "15")),
            round_robin_turn_budget=int(os.getenv("CHOREO_ROUND_ROBIN_TURN_BUDGET", "20")),
            hierarchical_turn_budget=int(os.getenv("CHOREO_HIERARCHICAL_TURN_BUDGET", "25")),
            phrase_completion=_env_bool("CHOREO_PHRASE_COMPLETION", True),
            log_level=os.getenv("CHOREO_LOG_LEVEL", "INFO"),
        )


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    model: Optional[ModelConfig] = None
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    environment: str = "development"

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        azure_key = os.getenv("AZURE_OPENAI_KEY")
        azure_endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        openai_key = os.getenv("OPENAI_API_KEY")
        model_name = os.getenv("CHOREO_MODEL", "gpt-4o")
        max_concurrent = int(os.getenv("CHOREO_MAX_CONCURRENT", "50"))

        model_config = None
        if azure_key and azure_endpoint:
            model_config = ModelConfig(
                api_key=azure_key,
                model=os.getenv("AZURE_OPENAI_DEPLOYMENT", model_name),
                endpoint=azure_endpoint,
                api_version=os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview"),
                max_concurrent=max_concurrent,
            )
        elif openai_key:
            model_config = ModelConfig(
                api_key=openai_key,
                model=model_name,
                base_url=os.getenv("OPENAI_BASE_URL"),
                max_concurrent=max_concurrent,
            )

        return cls(
            model=model_config,
            orchestrator=OrchestratorConfig.from_env(),
            environment=os.getenv("ENVIRONMENT", "development"),
        )


# Global config instance
config = Config.from_env()
