"""
Verification code models.
Stores emailed one-time codes and the audit trail the verification rate limiter counts.
"""
import uuid
from enum import Enum
from sqlalchemy import Column, String, Boolean, DateTime, Index
from services.db import Base

class CodeType(str, Enum):
    """Purpose a verification code was issued for."""
    LOGIN = "login"
    SIGNUP = "signup"

class AttemptKind(str, Enum):
    """Rate-limited events recorded per email."""
    ISSUED = "issued"
    FAILED = "failed"

def _new_id() -> str:
    return str(uuid.uuid4())

class VerificationCode(Base):
    __tablename__ = "verification_codes"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(320), nullable=False, index=True)
    code = Column(String(10), nullable=False)
    type = Column(String(10), nullable=False)
    user_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    verified = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_verification_codes_lookup", "email", "code", "type", "verified"),
    )

    def __repr__(self):
        return f"<VerificationCode(email='{self.email}', type='{self.type}', verified={self.verified})>"

class VerificationAttempt(Base):
    """One issuance or one failed verification for an email, counted inside the rate window."""
    __tablename__ = "verification_attempts"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(320), nullable=False)
    type = Column(String(10), nullable=False)
    kind = Column(String(10), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_verification_attempts_window", "email", "kind", "created_at"),
    )
