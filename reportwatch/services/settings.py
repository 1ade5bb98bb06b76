"""
Settings service for managing configuration.

Values are read from the environment once, when the service is created, and
fall back to the constants in ``thresholds.py``. Includes an in-memory cache
with configurable TTL to avoid repeated asdict() serialization on every
settings access. The cache is keyed by settings section name and invalidated
on writes.
"""

import logging
import os
import time
from dataclasses import dataclass, field, asdict
from typing import Optional, Dict, Any, List, Tuple

from reportwatch.exceptions import ValidationError
from .thresholds import (
    RATE_LIMITS,
    RATE_LIMIT_WINDOW_SECONDS,
    RATE_LIMIT_RETENTION_HOURS,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# ---------------------------------------------------------------------------
# Settings cache: one asdict() per section until a write or TTL expiry.
# Thread-safe for basic dict operations under CPython's GIL.
# ---------------------------------------------------------------------------

_settings_cache: Dict[str, Tuple[Any, float]] = {}  # {section_key: (value, timestamp)}
SETTINGS_CACHE_TTL: float = float(os.getenv("SETTINGS_CACHE_TTL", "60"))  # seconds


def _get_cached(key: str) -> Tuple[bool, Any]:
    """Return (hit, value). hit=False means cache miss or expired."""
    entry = _settings_cache.get(key)
    if entry is not None:
        value, ts = entry
        if time.monotonic() - ts < SETTINGS_CACHE_TTL:
            return True, value
    return False, None


def _set_cached(key: str, value: Any) -> None:
    """Store a value in the cache with the current timestamp."""
    _settings_cache[key] = (value, time.monotonic())


def _invalidate_cached(key: str) -> None:
    """Remove a single section from the cache."""
    _settings_cache.pop(key, None)


def clear_settings_cache() -> None:
    """Clear the entire settings cache. Useful for testing and admin resets."""
    _settings_cache.clear()
    logger.debug("Settings cache cleared")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}, using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in ("1", "true", "yes", "on")


@dataclass
class RateLimitSettings:
    """Per-action ceilings and ledger windows."""
    incident_submission: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_INCIDENT_SUBMISSION", RATE_LIMITS["incident_submission"]))
    entity_creation: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_ENTITY_CREATION", RATE_LIMITS["entity_creation"]))
    ai_call: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_AI_CALL", RATE_LIMITS["ai_call"]))
    search: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_SEARCH", RATE_LIMITS["search"]))
    window_seconds: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_WINDOW_SECONDS", RATE_LIMIT_WINDOW_SECONDS))
    retention_hours: int = field(
        default_factory=lambda: _env_int("RATE_LIMIT_RETENTION_HOURS", RATE_LIMIT_RETENTION_HOURS))

    def ceilings(self) -> Dict[str, int]:
        return {
            "incident_submission": self.incident_submission,
            "entity_creation": self.entity_creation,
            "ai_call": self.ai_call,
            "search": self.search,
        }


@dataclass
class AISettings:
    """Best-effort AI collaborator configuration."""
    enabled: bool = field(default_factory=lambda: _env_bool("AI_ENRICHMENT_ENABLED", True))
    provider: str = field(default_factory=lambda: os.getenv("AI_PROVIDER", "anthropic"))
    model: str = field(default_factory=lambda: os.getenv("AI_MODEL", "claude-sonnet-4-20250514"))
    max_tokens: int = field(default_factory=lambda: _env_int("AI_MAX_TOKENS", 800))
    call_timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("AI_CALL_TIMEOUT_SECONDS", "8")))
    fallback_provider: Optional[str] = field(
        default_factory=lambda: os.getenv("AI_FALLBACK_PROVIDER") or None)
    fallback_model: Optional[str] = field(
        default_factory=lambda: os.getenv("AI_FALLBACK_MODEL") or None)


@dataclass
class SecuritySettings:
    """Secrets for the service identity and the client fingerprint hash."""
    service_api_key: Optional[str] = field(default_factory=lambda: os.getenv("SERVICE_API_KEY"))
    fingerprint_secret: str = field(
        default_factory=lambda: os.getenv("FINGERPRINT_SECRET", "reportwatch-dev-secret"))

    def __repr__(self) -> str:
        return "SecuritySettings(service_api_key=***, fingerprint_secret=***)"


@dataclass
class ServerSettings:
    """HTTP server behaviour."""
    cors_origins: List[str] = field(default_factory=lambda: [
        o.strip() for o in os.getenv(
            "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
        ).split(",") if o.strip()
    ])
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


@dataclass
class AllSettings:
    rate_limits: RateLimitSettings = field(default_factory=RateLimitSettings)
    ai: AISettings = field(default_factory=AISettings)
    security: SecuritySettings = field(default_factory=SecuritySettings)
    server: ServerSettings = field(default_factory=ServerSettings)


class SettingsService:
    """Service for managing application settings."""

    def __init__(self, settings: Optional[AllSettings] = None):
        self._settings = settings or AllSettings()

    @property
    def rate_limits(self) -> RateLimitSettings:
        return self._settings.rate_limits

    @property
    def ai(self) -> AISettings:
        return self._settings.ai

    @property
    def security(self) -> SecuritySettings:
        return self._settings.security

    @property
    def server(self) -> ServerSettings:
        return self._settings.server

    def get_all(self) -> dict:
        """Get all non-secret settings as a dict."""
        hit, cached = _get_cached("all")
        if hit:
            return cached
        result = {
            'rate_limits': self.get_rate_limits(),
            'ai': asdict(self._settings.ai),
            'server': asdict(self._settings.server),
        }
        _set_cached("all", result)
        return result

    def get_rate_limits(self) -> dict:
        """Get rate-limit settings."""
        hit, cached = _get_cached("rate_limits")
        if hit:
            return cached
        result = asdict(self._settings.rate_limits)
        _set_cached("rate_limits", result)
        return result

    def update_rate_limits(self, config: dict) -> dict:
        """Update rate-limit settings in place."""
        for key, value in config.items():
            if hasattr(self._settings.rate_limits, key):
                try:
                    value = int(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"rate_limits.{key} must be an integer")
                if value < 1:
                    raise ValidationError(f"rate_limits.{key} must be positive")
                setattr(self._settings.rate_limits, key, value)
                logger.info(f"Updated rate_limits.{key} = {value}")

        _invalidate_cached("rate_limits")
        _invalidate_cached("all")
        return self.get_rate_limits()

    def update_ai(self, config: dict) -> dict:
        """Update AI collaborator settings in place."""
        ai = self._settings.ai
        for key, value in config.items():
            if not hasattr(ai, key):
                continue
            current = getattr(ai, key)
            try:
                if isinstance(current, bool):
                    value = value if isinstance(value, bool) else str(value).lower() in ("1", "true", "yes", "on")
                elif isinstance(current, (int, float)):
                    value = type(current)(value)
            except (TypeError, ValueError):
                raise ValidationError(f"ai.{key} must be a {type(current).__name__}")
            setattr(ai, key, value)
            logger.info(f"Updated ai.{key} = {value}")

        _invalidate_cached("all")
        return asdict(ai)


# Singleton instance
_settings_service: Optional[SettingsService] = None


def get_settings_service() -> SettingsService:
    """Get the singleton settings service instance."""
    global _settings_service
    if _settings_service is None:
        _settings_service = SettingsService()
    return _settings_service


def reset_settings_service() -> None:
    """Drop the singleton so the next access re-reads the environment."""
    global _settings_service
    _settings_service = None
    clear_settings_cache()
