"""Configuration management for the chat relay service."""

from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_MODEL = "claude-3-5-sonnet-latest"
DEFAULT_PROVIDER = "Anthropic"
MAX_TOKENS = 8000


def _env_bool(name: str, default: bool) -> bool:
    """Get boolean environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_float(name: str, default: float) -> float:
    """Get float environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    """Get integer environment variable with fallback."""
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str) -> str:
    """Get string environment variable with fallback."""
    v = os.getenv(name)
    if v is None:
        return default
    return v


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Routing defaults (used when a message carries no directive)
    default_model: str
    default_provider: str
    max_tokens: int

    # Timeouts
    request_timeout_s: float
    discovery_timeout_s: float
    discover_local_models: bool

    # Headers sent to upstreams that want attribution (OpenRouter)
    http_referer: str
    x_title: str

    # Optional file overriding the built-in system prompt
    system_prompt_path: str

    # Server settings
    port: int
    log_level: str
    max_request_bytes: int
    log_path: str
    user_agent: str

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            default_model=_env_str("DEFAULT_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL,
            default_provider=_env_str("DEFAULT_PROVIDER", DEFAULT_PROVIDER).strip() or DEFAULT_PROVIDER,
            max_tokens=_env_int("MAX_TOKENS", MAX_TOKENS),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 60.0),
            discovery_timeout_s=_env_float("DISCOVERY_TIMEOUT_S", 2.0),
            discover_local_models=_env_bool("DISCOVER_LOCAL_MODELS", True),
            http_referer=_env_str("HTTP_REFERER", "http://localhost"),
            x_title=_env_str("X_TITLE", "chat-relay"),
            system_prompt_path=_env_str("SYSTEM_PROMPT_PATH", ""),
            port=_env_int("PORT", 5173),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper().strip(),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 2_000_000),  # ~2MB
            log_path=_env_str("LOG_PATH", "/var/log/chat-relay/chat-relay.log"),
            user_agent=_env_str("USER_AGENT", "chat-relay/0.3.0"),
        )

    def validate(self) -> None:
        """Validate configuration."""
        if not self.default_model:
            raise ValueError("DEFAULT_MODEL must be non-empty")
        if not self.default_provider:
            raise ValueError("DEFAULT_PROVIDER must be non-empty")
        if self.max_tokens <= 0:
            raise ValueError("MAX_TOKENS must be > 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.discovery_timeout_s <= 0:
            raise ValueError("DISCOVERY_TIMEOUT_S must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if not self.log_path:
            raise ValueError("LOG_PATH must be non-empty")
        if not self.user_agent:
            raise ValueError("USER_AGENT must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
