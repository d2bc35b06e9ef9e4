"""Application configuration using Pydantic Settings.

This module provides centralized configuration management for the Personaut
agent core. All settings can be overridden via environment variables or a .env
file.
"""

import logging
from typing import Any

import structlog
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        gemini_api_key: API key for Google Gemini models.
        default_model: Model used by chat agents and workflow executors.
        llm_fallback_model: Model tried once when the primary fails after retries.
        llm_max_retries: Retries on transient LLM errors before giving up.
        llm_request_timeout_seconds: Timeout for a single LLM API call.
        use_mock_llm: If True, agents use canned mock responses.
        max_active_agents: Upper bound on live agents in one registry (0 disables
            the limit). Only agents that are not leased can be evicted.
        agent_task_timeout_seconds: Per-task timeout inside a workflow (0 disables).
        event_history_limit: Events of the current run kept per channel for replay.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_format: Log format (json or text).
    """

    # LLM Configuration
    gemini_api_key: str = ""
    # Model names must include provider prefix for LiteLLM (e.g., gemini/, bedrock/)
    default_model: str = "gemini/gemini-2.0-flash"
    llm_fallback_model: str | None = None
    llm_max_retries: int = 3
    llm_request_timeout_seconds: int = 120
    use_mock_llm: bool = False

    # Agent Registry
    max_active_agents: int = 0

    # Workflow Execution
    agent_task_timeout_seconds: float = 0.0

    # Event Bus
    event_history_limit: int = 5000

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("log_format", mode="before")
    @classmethod
    def parse_log_format(cls, v: Any) -> str:
        """Normalize the log format, falling back to json for unknown values."""
        if isinstance(v, str) and v.strip().lower() in ("json", "text"):
            return v.strip().lower()
        return "json"

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors for either JSON or console output.

    Args:
        log_level: The minimum log level to emit (DEBUG, INFO, WARNING, ERROR).
        log_format: Output format - 'json' for production, 'text' for development.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# Global settings instance
settings = Settings()

# Configure logging on module import
configure_logging(settings.log_level, settings.log_format)

# Create a logger for this module
logger = structlog.get_logger(__name__)
