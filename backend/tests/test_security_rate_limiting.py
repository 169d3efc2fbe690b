"""
Security tests for rate limiting.
Covers the per-email verification limiter, its behaviour when the store is down, and the
per-IP request limiter in front of every endpoint.
"""
import pytest
import asyncio
from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from conftest import FakeClock
from dao.verification_code_dao import VerificationCodeDAO
from models.verification_code import AttemptKind
from services.rate_limiter import InMemoryRateLimiter, VerificationRateLimiter, RateLimitResult
from services.security import SecurityConfig

ALICE = "alice@example.com"

def failing_dao():
    dao = AsyncMock(spec=VerificationCodeDAO)
    dao.db = AsyncMock()
    dao.count_attempts.side_effect = OperationalError("SELECT count(*)", {}, Exception("timeout"))
    return dao

@pytest.mark.security
class TestVerificationRateLimiter:
    """Per-email limits over the verification_attempts table."""

    async def test_issuance_window(self, db_session, clock):
        dao = VerificationCodeDAO(db_session)
        limiter = VerificationRateLimiter(dao, clock=clock)

        for i in range(5):
            result = await limiter.check_issuance_allowed(ALICE)
            assert result.allowed is True
            assert result.remaining == 5 - i
            await dao.create_code(ALICE, "login", "123456", clock(), clock(), None)

        result = await limiter.check_issuance_allowed(ALICE)
        assert result.allowed is False
        assert result.remaining == 0
        assert result.retry_after == 900

    async def test_window_slides(self, db_session, clock):
        dao = VerificationCodeDAO(db_session)
        limiter = VerificationRateLimiter(dao, clock=clock)
        for _ in range(5):
            await dao.record_failed_attempt(ALICE, "login", clock())

        assert (await limiter.check_verification_allowed(ALICE)).allowed is False

        clock.advance(minutes=15, seconds=1)
        result = await limiter.check_verification_allowed(ALICE)
        assert result.allowed is True
        assert result.remaining == 5

    async def test_counters_are_independent(self, db_session, clock):
        dao = VerificationCodeDAO(db_session)
        limiter = VerificationRateLimiter(dao, clock=clock)
        for _ in range(5):
            await dao.record_failed_attempt(ALICE, "signup", clock())

        assert (await limiter.check_verification_allowed(ALICE)).allowed is False
        assert (await limiter.check_issuance_allowed(ALICE)).allowed is True
        assert (await limiter.check_verification_allowed("carol@example.com")).allowed is True

    async def test_store_failure_fails_open_by_default(self):
        dao = failing_dao()
        limiter = VerificationRateLimiter(dao, clock=FakeClock())

        result = await limiter.check_issuance_allowed(ALICE)

        assert result.allowed is True
        dao.db.rollback.assert_awaited_once()

    async def test_store_failure_can_fail_closed(self):
        config = SecurityConfig()
        config.rate_limit_fail_open = False
        limiter = VerificationRateLimiter(failing_dao(), config=config, clock=FakeClock())

        result = await limiter.check_verification_allowed(ALICE)

        assert result.allowed is False
        assert result.retry_after == config.retry_after_seconds

    async def test_count_uses_attempt_kind(self, db_session, clock):
        dao = VerificationCodeDAO(db_session)
        await dao.record_failed_attempt(ALICE, "login", clock())

        since = clock()
        assert await dao.count_attempts(ALICE, AttemptKind.FAILED, since) == 1
        assert await dao.count_attempts(ALICE, AttemptKind.ISSUED, since) == 0

@pytest.mark.security
class TestInMemoryRateLimiting:
    """Per-client limits applied by the HTTP middleware."""

    async def test_basic_rate_limiting(self):
        rate_limiter = InMemoryRateLimiter()
        client_key = "rate_limit:198.51.100.1:/verify-code"

        for i in range(10):
            result = await rate_limiter.check_rate_limit(client_key, window_seconds=60, max_requests=10)
            assert result.allowed is True
            assert result.remaining == 10 - i - 1

        result = await rate_limiter.check_rate_limit(client_key, window_seconds=60, max_requests=10)
        assert isinstance(result, RateLimitResult)
        assert result.allowed is False
        assert result.retry_after >= 1

    async def test_rate_limit_window_expiry(self):
        rate_limiter = InMemoryRateLimiter()
        client_key = "test_window_expiry"

        for _ in range(5):
            assert (await rate_limiter.check_rate_limit(client_key, window_seconds=1, max_requests=5)).allowed

        result = await rate_limiter.check_rate_limit(client_key, window_seconds=1, max_requests=5)
        assert result.allowed is False

        await asyncio.sleep(1.1)

        result = await rate_limiter.check_rate_limit(client_key, window_seconds=1, max_requests=5)
        assert result.allowed is True

    async def test_different_client_isolation(self):
        rate_limiter = InMemoryRateLimiter()

        for _ in range(5):
            await rate_limiter.check_rate_limit("client_1", window_seconds=60, max_requests=5)

        assert (await rate_limiter.check_rate_limit("client_1", window_seconds=60, max_requests=5)).allowed is False
        assert (await rate_limiter.check_rate_limit("client_2", window_seconds=60, max_requests=5)).allowed is True

    async def test_cleanup_drops_idle_clients(self):
        rate_limiter = InMemoryRateLimiter()
        await rate_limiter.check_rate_limit("idle_client", window_seconds=60, max_requests=5)

        await rate_limiter.cleanup_expired(max_age_seconds=0)

        assert "idle_client" not in rate_limiter._requests

    async def test_concurrent_requests(self):
        rate_limiter = InMemoryRateLimiter()

        results = await asyncio.gather(*[
            rate_limiter.check_rate_limit("concurrent_client", window_seconds=60, max_requests=10)
            for _ in range(20)
        ])

        assert sum(1 for r in results if r.allowed) == 10

@pytest.mark.security
@pytest.mark.integration
class TestRateLimitMiddleware:

    async def test_admin_endpoint_is_limited_per_ip(self, client):
        statuses = []
        for _ in range(31):
            response = await client.post("/ban-user", json={"userId": "user-1"})
            statuses.append(response.status_code)

        assert statuses[:30] == [401] * 30
        assert statuses[30] == 429
        assert response.json()["error"] == "Too many requests. Please try again later."
        assert "Retry-After" in response.headers

    async def test_limits_are_per_ip(self, client):
        for _ in range(30):
            await client.post("/ban-user", json={"userId": "user-1"})

        response = await client.post(
            "/ban-user", json={"userId": "user-1"}, headers={"X-Forwarded-For": "198.51.100.77"}
        )
        assert response.status_code == 401

    async def test_prepended_address_does_not_reset_limit(self, client):
        for _ in range(30):
            await client.post("/ban-user", json={"userId": "user-1"}, headers={"X-Forwarded-For": "198.51.100.5"})

        response = await client.post(
            "/ban-user", json={"userId": "user-1"}, headers={"X-Forwarded-For": "10.9.9.9, 198.51.100.5"}
        )
        assert response.status_code == 429

    async def test_malformed_codes_do_not_use_ip_slots(self, client, email_sender):
        for _ in range(40):
            response = await client.post("/verify-code", json={"email": ALICE, "code": "12", "type": "login"})
            assert response.status_code == 400
            assert response.json() == {"valid": False, "error": "Invalid code format"}

        await client.post("/issue-verification-code", json={"email": ALICE, "type": "login"})
        response = await client.post(
            "/verify-code", json={"email": ALICE, "code": email_sender.last_code(), "type": "login"}
        )
        assert response.status_code == 200

    async def test_verification_429_keeps_endpoint_body(self, client):
        for _ in range(5):
            await client.post("/verify-code", json={"email": ALICE, "code": "000000", "type": "login"})

        response = await client.post("/verify-code", json={"email": ALICE, "code": "000000", "type": "login"})

        assert response.status_code == 429
        assert response.json() == {
            "valid": False,
            "error": "Too many attempts. Please try again later.",
            "retryAfter": 900
        }
        assert response.headers["Retry-After"] == "900"
        assert "X-RateLimit-Limit" not in response.headers

    async def test_preflight_is_not_counted(self, client):
        for _ in range(70):
            await client.options(
                "/health",
                headers={"Origin": "https://cheatplace.studio", "Access-Control-Request-Method": "GET"}
            )

        response = await client.get("/health")
        assert response.status_code == 200
