"""
Ledger-backed rate limiter for anonymous clients.

Clients are identified by a pseudonymous fingerprint: a SHA-256 hash of the
network address concatenated with a server-side secret, truncated to 16 hex
characters. The address itself is never stored.

Every attempted action appends one row to the ``rate_limit_events`` ledger.
``check`` counts the rows for ``(fingerprint, action_type)`` inside the
trailing window; nothing is kept in process memory, so limits hold across
workers and hosts.

``check`` and ``record`` are separate calls so that callers can validate the
request body in between. Two concurrent requests from one fingerprint can
both pass ``check`` before either records, so the ceiling is a soft cap.

``reset_at`` is ``now + window``, not the expiry of the oldest counted event.

If the ledger cannot be read, ``check`` fails open: the request is allowed
with the full ceiling reported as remaining, and the fault is logged.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional

from reportwatch.exceptions import ValidationError
from .thresholds import FINGERPRINT_LENGTH

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """Independently metered action classes."""
    INCIDENT_SUBMISSION = "incident_submission"
    ENTITY_CREATION = "entity_creation"
    AI_CALL = "ai_call"
    SEARCH = "search"


@dataclass(frozen=True)
class RateLimitStatus:
    allowed: bool
    remaining: int
    limit: int
    reset_at: datetime
    action_type: str
    window_seconds: int = 3600

    @property
    def retry_after_seconds(self) -> int:
        return 0 if self.allowed else self.window_seconds

    def headers(self) -> Dict[str, str]:
        """Response headers advertising the limiter state."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at.isoformat(),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after_seconds)
        return headers


def fingerprint_client(address: Optional[str], secret: str) -> str:
    """Keyed, truncated hash of a client address."""
    digest = hashlib.sha256(f"{address or 'unknown'}{secret}".encode("utf-8")).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Windowed counts over the append-only rate-limit ledger."""

    def __init__(
        self,
        ledger,
        ceilings: Dict[str, int],
        window_seconds: int = 3600,
        retention_hours: int = 24,
    ):
        self._ledger = ledger
        self.configure(ceilings, window_seconds, retention_hours)

    def configure(
        self,
        ceilings: Dict[str, int],
        window_seconds: int = 3600,
        retention_hours: int = 24,
    ) -> None:
        """Replace ceilings and windows; applies to the next ``check``."""
        self._ceilings = dict(ceilings)
        self._window = timedelta(seconds=window_seconds)
        self._retention = max(timedelta(hours=retention_hours), self._window)
        logger.info(
            f"Rate limits: {self._ceilings} per {window_seconds}s, "
            f"ledger retention {retention_hours}h"
        )

    def _action(self, action_type) -> str:
        try:
            return ActionType(action_type).value
        except ValueError:
            raise ValidationError(f"Unknown rate-limited action: {action_type}")

    def ceiling(self, action_type) -> int:
        action = self._action(action_type)
        try:
            return self._ceilings[action]
        except KeyError:
            raise ValidationError(f"No rate limit configured for action '{action}'")

    async def check(
        self,
        fingerprint: str,
        action_type,
        now: Optional[datetime] = None,
    ) -> RateLimitStatus:
        """Report whether one more ``action_type`` is allowed for this client."""
        action = self._action(action_type)
        limit = self.ceiling(action)
        now = now or _utcnow()
        window_seconds = int(self._window.total_seconds())

        try:
            count = await self._ledger.count_rate_limit_events(
                fingerprint, action, now - self._window,
            )
        except Exception as exc:
            logger.error(
                "Rate limit check failed for %s/%s, failing open: %s",
                fingerprint, action, exc,
            )
            count = 0

        return RateLimitStatus(
            allowed=count < limit,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=now + self._window,
            action_type=action,
            window_seconds=window_seconds,
        )

    async def record(
        self,
        fingerprint: str,
        action_type,
        now: Optional[datetime] = None,
    ) -> None:
        """Append one ledger entry for ``(fingerprint, action_type)``."""
        action = self._action(action_type)
        try:
            await self._ledger.insert_rate_limit_event(fingerprint, action, now or _utcnow())
        except Exception as exc:
            logger.error("Rate limit record failed for %s/%s: %s", fingerprint, action, exc)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Delete ledger entries older than the retention horizon."""
        cutoff = (now or _utcnow()) - self._retention
        deleted = await self._ledger.delete_rate_limit_events_before(cutoff)
        logger.info(f"Rate limit sweep removed {deleted} events older than {cutoff.isoformat()}")
        return deleted


# Singleton
_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the singleton limiter bound to the Postgres ledger."""
    global _limiter
    if _limiter is None:
        from .repository import get_repository
        from .settings import get_settings_service

        cfg = get_settings_service().rate_limits
        _limiter = RateLimiter(
            get_repository(),
            cfg.ceilings(),
            window_seconds=cfg.window_seconds,
            retention_hours=cfg.retention_hours,
        )
    return _limiter
