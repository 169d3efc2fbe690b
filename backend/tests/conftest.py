"""
Pytest configuration and fixtures for the verification API.
Provides an in-memory database, a recording email sender, a controllable clock and an
HTTP client bound to the FastAPI app with those collaborators injected.
"""
import os
import re

# Settings are read at import time, so the environment must be prepared first
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ["JWT_SECRET_KEY"] = "test_secret_key_for_testing_purposes_only_very_long_and_secure"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["ENABLE_SECURITY_HEADERS"] = "true"
# httpx.ASGITransport reports the peer as 127.0.0.1
os.environ["TRUSTED_PROXIES"] = "127.0.0.1"
os.environ.pop("RESEND_API_KEY", None)

import pytest
import httpx
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from services.db import Base, get_db
from models.verification_code import VerificationCode, VerificationAttempt
from models.profile import Profile, UserRole
from models.ban import BannedEmail, BannedIP
from services.email import EmailSender
from services.exceptions import EmailDeliveryError
from services.dependencies import get_email_sender, get_clock
from services.rate_limiter import get_rate_limiter
from main import app

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CODE_PATTERN = re.compile(r">(\d{6})</span>")

class FakeClock:
    """Deterministic UTC clock that tests can move forward."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

class RecordingEmailSender(EmailSender):
    """Captures messages instead of delivering them."""

    def __init__(self):
        self.messages = []

    async def send(self, to: str, subject: str, html: str, bcc: Optional[List[str]] = None) -> None:
        self.messages.append({"to": to, "subject": subject, "html": html, "bcc": bcc})

    def last_code(self) -> str:
        match = CODE_PATTERN.search(self.messages[-1]["html"])
        assert match, "no verification code in the last email"
        return match.group(1)

class FailingEmailSender(EmailSender):
    async def send(self, to: str, subject: str, html: str, bcc: Optional[List[str]] = None) -> None:
        raise EmailDeliveryError("provider unavailable")

@pytest.fixture
async def test_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()

@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def email_sender():
    return RecordingEmailSender()

@pytest.fixture(autouse=True)
async def reset_request_limiter():
    """The per-IP middleware limiter is process-wide; isolate tests from each other."""
    await get_rate_limiter().reset()
    yield
    await get_rate_limiter().reset()

@pytest.fixture
async def client(session_factory, email_sender, clock):
    """HTTP client for the app with database, email sender and clock overridden."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    app.dependency_overrides[get_clock] = lambda: clock

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client

    app.dependency_overrides = {}

async def count_rows(session_factory, model, **filters) -> int:
    """Count rows with a fresh session so results reflect committed state."""
    from sqlalchemy import func, select

    async with session_factory() as session:
        query = select(func.count()).select_from(model)
        for column, value in filters.items():
            query = query.where(getattr(model, column) == value)
        result = await session.execute(query)
        return result.scalar_one()

def make_token(user_id: str, **claims) -> str:
    payload = {"sub": user_id, "aud": "authenticated", **claims}
    return jwt.encode(payload, os.environ["JWT_SECRET_KEY"], algorithm="HS256")

@pytest.fixture
async def admin_user(session_factory) -> Profile:
    async with session_factory() as session:
        admin = Profile(id="admin-1", email="admin@example.com", username="admin")
        session.add(admin)
        session.add(UserRole(user_id=admin.id, role="admin"))
        await session.commit()
        return admin

@pytest.fixture
async def vendor_user(session_factory) -> Profile:
    async with session_factory() as session:
        vendor = Profile(id="vendor-1", email="vendor@example.com", username="vendor")
        session.add(vendor)
        session.add(UserRole(user_id=vendor.id, role="vendor"))
        await session.commit()
        return vendor

@pytest.fixture
async def regular_user(session_factory) -> Profile:
    async with session_factory() as session:
        user = Profile(id="user-1", email="bob@example.com", username="bob")
        session.add(user)
        session.add(UserRole(user_id=user.id, role="client"))
        await session.commit()
        return user

def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as end-to-end tests through the HTTP API"
    )
    config.addinivalue_line(
        "markers", "security: marks tests as security tests"
    )
