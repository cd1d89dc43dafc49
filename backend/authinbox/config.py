"""
Process-wide configuration.

Values are read from environment variables (a local .env file is loaded
first when present) exactly once per process and frozen into a Settings
instance. Everything downstream receives Settings explicitly.

The webhook and listing credentials (INBOUND_WEBHOOK_SECRET,
CODES_ACCESS_TOKEN) and the relay format (EMAIL_PROVIDER) are not part of
Settings: the routers read them from the environment on every request, so
a rotated secret takes effect without a restart.

Environment variables
---------------------
PRIMARY_API_KEYS          Comma-separated primary provider (Gemini) keys.
GOOGLE_API_KEY            Legacy single-key alias, used when
                          PRIMARY_API_KEYS is not set.
PRIMARY_MODEL             Gemini model name.
SECONDARY_PROVIDER        "openai" (default) or "anthropic".
SECONDARY_API_KEY         Secondary provider key (optional).
SECONDARY_MODEL           Secondary model name.
SECONDARY_BASE_URL        Base URL for the OpenAI-compatible secondary.
AI_TIMEOUT_SECONDS        Per-call timeout.
AI_MAX_RETRIES            Extraction attempts per email.
AI_BACKOFF_SECONDS        Linear backoff base between attempts.
SECONDARY_FALLBACK_POLICY first_attempt | every_attempt | never.
REPEAT_GATE_THRESHOLD     Identical password-reset codes needed for release.
REPEAT_GATE_TTL_MINUTES   Age after which a gate record is ignored.
CODE_TTL_MINUTES          Age after which stored codes are purged.
USE_BARK                  "true" to push Bark notifications.
BARK_URL                  Bark server base URL.
BARK_TOKENS               Comma-separated Bark device tokens.
"""

import os
from enum import Enum
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class SecondaryFallbackPolicy(str, Enum):
    """When the retry loop may call the secondary provider directly."""
    FIRST_ATTEMPT = "first_attempt"
    EVERY_ATTEMPT = "every_attempt"
    NEVER = "never"


class Settings(BaseModel):
    model_config = {"frozen": True}

    primary_api_keys: tuple[str, ...] = ()
    primary_model: str = "gemini-1.5-flash-latest"
    primary_base_url: str = "https://generativelanguage.googleapis.com/v1beta"

    secondary_provider: Literal["openai", "anthropic"] = "openai"
    secondary_api_key: Optional[str] = None
    secondary_model: Optional[str] = None
    secondary_base_url: str = "https://api.openai.com/v1"
    secondary_temperature: float = 0.1
    secondary_max_tokens: int = 500

    ai_timeout_seconds: float = 30.0
    ai_max_retries: int = Field(default=3, ge=1)
    ai_backoff_seconds: float = Field(default=1.0, ge=0)
    secondary_fallback_policy: SecondaryFallbackPolicy = SecondaryFallbackPolicy.FIRST_ATTEMPT

    repeat_gate_threshold: int = Field(default=3, ge=1)
    repeat_gate_ttl_minutes: int = 30
    code_ttl_minutes: int = 10

    use_bark: bool = False
    bark_url: str = "https://api.day.app"
    bark_tokens: tuple[str, ...] = ()


def _split_list(value: Optional[str]) -> tuple[str, ...]:
    """
    Split a comma-separated env value into a tuple of non-empty items.

    Surrounding "$$" markers (left over from some secret managers) are
    stripped before splitting.
    """
    if not value:
        return ()
    value = value.strip()
    if value.startswith("$$"):
        value = value[2:]
    if value.endswith("$$"):
        value = value[:-2]
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    """Build Settings from the current environment."""
    primary_keys = _split_list(os.getenv("PRIMARY_API_KEYS")) or _split_list(
        os.getenv("GOOGLE_API_KEY")
    )

    values: dict = {
        "primary_api_keys": primary_keys,
        "secondary_api_key": os.getenv("SECONDARY_API_KEY") or None,
        "use_bark": _env_bool("USE_BARK"),
        "bark_tokens": _split_list(os.getenv("BARK_TOKENS")),
    }

    # Optional scalar overrides; pydantic handles the type coercion.
    overrides = {
        "primary_model": "PRIMARY_MODEL",
        "primary_base_url": "PRIMARY_BASE_URL",
        "secondary_provider": "SECONDARY_PROVIDER",
        "secondary_model": "SECONDARY_MODEL",
        "secondary_base_url": "SECONDARY_BASE_URL",
        "ai_timeout_seconds": "AI_TIMEOUT_SECONDS",
        "ai_max_retries": "AI_MAX_RETRIES",
        "ai_backoff_seconds": "AI_BACKOFF_SECONDS",
        "secondary_fallback_policy": "SECONDARY_FALLBACK_POLICY",
        "repeat_gate_threshold": "REPEAT_GATE_THRESHOLD",
        "repeat_gate_ttl_minutes": "REPEAT_GATE_TTL_MINUTES",
        "code_ttl_minutes": "CODE_TTL_MINUTES",
        "bark_url": "BARK_URL",
    }
    for field_name, env_name in overrides.items():
        raw = os.getenv(env_name, "").strip()
        if raw:
            values[field_name] = raw.lower() if field_name in (
                "secondary_provider", "secondary_fallback_policy"
            ) else raw

    return Settings(**values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide Settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached Settings (mainly for testing)."""
    global _settings
    _settings = None
