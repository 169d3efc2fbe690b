"""
Rate limiting for the verification flow.
A store-backed limiter bounds code issuance and failed verifications per email, and an
in-memory sliding window limiter protects every endpoint per client IP.
"""
import asyncio
from typing import Callable, Dict, Optional
from datetime import datetime, timedelta, timezone
from collections import defaultdict, deque
from dataclasses import dataclass
import logging

from sqlalchemy.exc import SQLAlchemyError

from dao.verification_code_dao import VerificationCodeDAO
from models.verification_code import AttemptKind
from services.security import security_config, SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

@dataclass
class RateLimitResult:
    """Result of rate limit check."""
    allowed: bool
    remaining: int
    reset_time: datetime
    retry_after: Optional[int] = None

class VerificationRateLimiter:
    """
    Per-email limiter over the verification_attempts table.

    Issuance and verification use independent counters (``issued`` and ``failed`` rows)
    with the same window and threshold. Store lookup failures fail open unless
    RATE_LIMIT_FAIL_OPEN is disabled.
    """

    def __init__(self, dao: VerificationCodeDAO, config: SecurityConfig = security_config,
                 clock: Callable[[], datetime] = SecurityUtils.get_utc_now):
        self.dao = dao
        self.config = config
        self.clock = clock

    @property
    def window(self) -> timedelta:
        return timedelta(minutes=self.config.verification_rate_limit_window_minutes)

    async def check_issuance_allowed(self, email: str) -> RateLimitResult:
        return await self._check(email, AttemptKind.ISSUED)

    async def check_verification_allowed(self, email: str) -> RateLimitResult:
        """Remaining is the number of failed verifications still allowed."""
        return await self._check(email, AttemptKind.FAILED)

    async def _check(self, email: str, kind: AttemptKind) -> RateLimitResult:
        now = self.clock()
        max_attempts = self.config.verification_rate_limit_max_attempts
        reset_time = now + self.window

        try:
            count = await self.dao.count_attempts(email, kind, now - self.window)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            SecurityUtils.log_security_event(
                "rate_limit_lookup_failed",
                {"kind": kind.value, "error": type(e).__name__, "fail_open": self.config.rate_limit_fail_open},
                user_email=email
            )
            if self.config.rate_limit_fail_open:
                return RateLimitResult(allowed=True, remaining=max_attempts, reset_time=reset_time)
            return RateLimitResult(
                allowed=False, remaining=0, reset_time=reset_time,
                retry_after=self.config.retry_after_seconds
            )

        if count >= max_attempts:
            SecurityUtils.log_security_event(
                "verification_rate_limit_exceeded",
                {"kind": kind.value, "count": count, "max_attempts": max_attempts},
                user_email=email
            )
            return RateLimitResult(
                allowed=False, remaining=0, reset_time=reset_time,
                retry_after=self.config.retry_after_seconds
            )

        return RateLimitResult(allowed=True, remaining=max_attempts - count, reset_time=reset_time)

class InMemoryRateLimiter:
    """
    In-memory per-client limiter used by the HTTP middleware.
    For production with multiple instances, the store-backed limits above remain authoritative.
    """

    def __init__(self):
        # Structure: {client_key: deque([timestamp1, timestamp2, ...])}
        self._requests: Dict[str, deque] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def check_rate_limit(self, client_key: str, window_seconds: int = 60,
                             max_requests: int = 60) -> RateLimitResult:
        """
        Check if client is within rate limits.

        Args:
            client_key: Unique identifier for the client (IP and path)
            window_seconds: Time window in seconds
            max_requests: Maximum requests allowed in window

        Returns:
            RateLimitResult with allow/deny decision
        """
        async with self._lock:
            now = datetime.now(timezone.utc)
            window_start = now - timedelta(seconds=window_seconds)

            # Clean old requests outside the window
            client_requests = self._requests[client_key]
            while client_requests and client_requests[0] < window_start:
                client_requests.popleft()

            current_requests = len(client_requests)
            remaining = max(0, max_requests - current_requests)

            if current_requests >= max_requests:
                reset_time = client_requests[0] + timedelta(seconds=window_seconds)
                retry_after = max(1, int((reset_time - now).total_seconds()))

                SecurityUtils.log_security_event(
                    "rate_limit_exceeded",
                    {
                        "client_key": client_key,
                        "current_requests": current_requests,
                        "max_requests": max_requests,
                        "window_seconds": window_seconds
                    }
                )

                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_time=reset_time,
                    retry_after=retry_after
                )

            client_requests.append(now)
            reset_time = now + timedelta(seconds=window_seconds)

            return RateLimitResult(
                allowed=True,
                remaining=remaining - 1,
                reset_time=reset_time
            )

    async def cleanup_expired(self, max_age_seconds: int = 3600):
        """Drop request timestamps older than max_age_seconds."""
        async with self._lock:
            cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
            for client_key, requests in list(self._requests.items()):
                while requests and requests[0] < cutoff:
                    requests.popleft()
                if not requests:
                    del self._requests[client_key]

    async def reset(self):
        async with self._lock:
            self._requests.clear()

# Global per-client limiter used by RateLimitMiddleware
rate_limiter = InMemoryRateLimiter()

def get_rate_limiter() -> InMemoryRateLimiter:
    """Get the global rate limiter instance."""
    return rate_limiter
