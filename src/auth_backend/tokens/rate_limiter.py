"""Rate limiter — throttles one-time-code issuance per (subject, purpose).

Sliding window with escalating backoff, evaluated against the existing
code record at the instant of the request:

* no record                                         → allow, first in window
* ``now - updated_at < cooldown_minutes``           → deny
* ``request_count >= max`` and
  ``now - created_at <= window``                    → deny, escalate cooldown
* window elapsed                                    → allow, new window
* otherwise                                         → allow, count + 1

``created_at`` marks the start of the current window; ``updated_at`` marks
the last issuance (or the last escalation).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from auth_backend.models.token import Token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Limits applied to code issuance; all durations in minutes."""

    max_requests: int = 5
    window_minutes: int = 10
    base_cooldown_minutes: int = 1
    extended_cooldown_minutes: int = 60

    @classmethod
    def from_settings(cls, settings) -> RateLimitPolicy:
        return cls(
            max_requests=settings.otp_max_requests,
            window_minutes=settings.otp_requests_window_minutes,
            base_cooldown_minutes=settings.otp_base_cooldown_minutes,
            extended_cooldown_minutes=settings.otp_extended_cooldown_minutes,
        )


@dataclass(frozen=True)
class RateLimitDecision:
    """What the manager should do with an issuance request."""

    allowed: bool
    request_count: int = 0
    cooldown_minutes: int = 0
    new_window: bool = False
    escalate: bool = False


class RateLimiter:
    """Pure policy evaluation; the caller applies the resulting mutation."""

    def __init__(self, policy: RateLimitPolicy | None = None) -> None:
        self._policy = policy or RateLimitPolicy()

    @property
    def policy(self) -> RateLimitPolicy:
        return self._policy

    def evaluate(self, record: Token | None, now: datetime) -> RateLimitDecision:
        policy = self._policy

        if record is None:
            return RateLimitDecision(
                allowed=True,
                request_count=1,
                cooldown_minutes=policy.base_cooldown_minutes,
                new_window=True,
            )

        cooldown = record.cooldown_minutes or 0
        count = record.request_count or 0

        if now - record.updated_at < timedelta(minutes=cooldown):
            logger.info(
                "Code request for subject %s (%s) inside %d-minute cooldown",
                record.subject_id,
                record.purpose,
                cooldown,
            )
            return RateLimitDecision(allowed=False, request_count=count, cooldown_minutes=cooldown)

        window_open = now - record.created_at <= timedelta(minutes=policy.window_minutes)

        if window_open and count >= policy.max_requests:
            logger.warning(
                "Code request budget exhausted for subject %s (%s); cooling down %d minutes",
                record.subject_id,
                record.purpose,
                policy.extended_cooldown_minutes,
            )
            return RateLimitDecision(
                allowed=False,
                request_count=count,
                cooldown_minutes=policy.extended_cooldown_minutes,
                escalate=True,
            )

        if not window_open:
            return RateLimitDecision(
                allowed=True,
                request_count=1,
                cooldown_minutes=policy.base_cooldown_minutes,
                new_window=True,
            )

        return RateLimitDecision(
            allowed=True,
            request_count=count + 1,
            cooldown_minutes=policy.base_cooldown_minutes,
        )
