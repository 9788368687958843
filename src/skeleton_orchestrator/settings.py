"""
skeleton_orchestrator.settings

Central configuration model (Pydantic Settings).

Responsibilities:
- Provide strongly-typed, env-driven settings for all layers.
- Hide secrets from repr/logging (e.g., the oracle API key).
- Carry the defaults new sessions are created with (limits, locale, checks).
- Offer a cached settings instance for dependency injection.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SKO_", case_sensitive=False)

    env: Literal["dev", "test", "prod"] = "dev"
    service_name: str = "skeleton-orchestrator"
    log_level: str = "INFO"

    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Persistence
    storage_backend: Literal["memory", "sql"] = "sql"
    database_url: str = "sqlite+aiosqlite:///./sessions.db"

    # Generation oracle (OpenAI-compatible chat completions endpoint)
    oracle_base_url: str = "https://openrouter.ai/api/v1"
    oracle_api_key: str = Field(default="", repr=False)
    oracle_model: str = "anthropic/claude-3.5-sonnet"
    oracle_temperature: float = 0.2
    oracle_max_tokens: int = 4000
    oracle_timeout_s: float = 120.0

    # Session defaults
    default_language: str = "ru"
    default_jurisdiction: str = "RU"
    max_questions_per_run: int = 20
    max_loops: int = 20
    max_history_turns: int = 100
    require_user_confirmation_for_assumptions: bool = True

    # Review loop: run SKELETON_REVIEW_APPLY after local impact ops.
    review_apply_refinement: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Cache avoids re-parsing env vars for each request dependency.
    return Settings()


# --- Module Notes -----------------------------------------------------------
# The review-loop cap is a module constant:
# `orchestrator.session_orchestrator.MAX_REVIEW_ITERATIONS`.
