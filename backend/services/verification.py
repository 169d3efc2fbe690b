"""
Email two-factor verification: code issuance and code verification.

Issuance:     Idle -> RateChecked -> CodeCreated -> EmailSent | EmailFailed
Verification: Pending -> Verified | Rejected

Verification success only unblocks the caller; the actual sign-in or sign-up is performed
by the client against the identity provider afterwards.
"""
import asyncio
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel, EmailStr, ValidationError
from sqlalchemy.exc import SQLAlchemyError

from dao.ban_dao import BanDAO
from dao.verification_code_dao import VerificationCodeDAO
from models.verification_code import CodeType, VerificationCode
from services.email import EmailSender, render_verification_email
from services.exceptions import (
    BannedError, CodeNotFoundError, DeliveryError, EmailDeliveryError, EmailDeliveryTimeout,
    InvalidRequestError, RateLimitError, StorageError
)
from services.rate_limiter import VerificationRateLimiter
from services.security import SecurityConfig, SecurityUtils, security_config

logger = logging.getLogger(__name__)

class _EmailAddress(BaseModel):
    email: EmailStr

def validate_email(email) -> str:
    """Return the address as accepted by email-validator. The local part keeps its case."""
    if not isinstance(email, str) or not email:
        raise InvalidRequestError("Email and type are required")
    try:
        return _EmailAddress(email=email).email
    except ValidationError:
        raise InvalidRequestError("Invalid email address")

def validate_type(code_type) -> str:
    try:
        return CodeType(code_type).value
    except ValueError:
        raise InvalidRequestError("Type must be 'login' or 'signup'")

def generate_code(length: int) -> str:
    """Uniformly random numeric code with exactly ``length`` digits."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))

class VerificationService:
    def __init__(self, dao: VerificationCodeDAO, ban_dao: BanDAO, email_sender: EmailSender,
                 config: SecurityConfig = security_config,
                 clock: Callable[[], datetime] = SecurityUtils.get_utc_now):
        self.dao = dao
        self.ban_dao = ban_dao
        self.email_sender = email_sender
        self.config = config
        self.clock = clock
        self.rate_limiter = VerificationRateLimiter(dao, config, clock)
        self.code_pattern = re.compile(rf"[0-9]{{{config.verification_code_length}}}")

    async def issue_code(self, email: str, code_type: str, user_id: Optional[str] = None) -> VerificationCode:
        """Create and persist a fresh code, replacing the email's pending ones."""
        now = self.clock()
        expires_at = now + timedelta(minutes=self.config.verification_code_expiry_minutes)
        code = generate_code(self.config.verification_code_length)

        try:
            removed = await self.dao.delete_pending_for_email(email)
            if removed:
                logger.info(f"Replaced {removed} pending code(s) for {SecurityUtils.mask_email(email)}")
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.warning(f"Could not delete pending codes, continuing: {type(e).__name__}: {e}")

        try:
            return await self.dao.create_code(email, code_type, code, now, expires_at, user_id)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.error(f"Failed to create verification code: {type(e).__name__}: {e}")
            raise StorageError("Failed to create verification code") from e

    async def request_code(self, email, code_type, user_id: Optional[str] = None,
                           client_ip: Optional[str] = None) -> None:
        email = validate_email(email)
        code_type = validate_type(code_type)

        await self._check_bans(email, client_ip)

        limit = await self.rate_limiter.check_issuance_allowed(email)
        if not limit.allowed:
            raise RateLimitError(limit.retry_after or self.config.retry_after_seconds)

        record = await self.issue_code(email, code_type, user_id)

        subject, html = render_verification_email(
            record.code, code_type, self.config.verification_code_expiry_minutes
        )
        try:
            await self.email_sender.send(email, subject, html)
        except EmailDeliveryError as e:
            # A timed out send may still arrive; the code it carries is already removed
            await self._rollback_issued(record.id)
            SecurityUtils.log_security_event(
                "verification_email_timeout" if isinstance(e, EmailDeliveryTimeout) else "verification_email_failed",
                {"type": code_type, "error": str(e)},
                user_email=email,
                client_ip=client_ip
            )
            raise DeliveryError() from e

        SecurityUtils.log_security_event(
            "verification_code_sent",
            {"type": code_type, "remaining": limit.remaining - 1},
            user_email=email,
            client_ip=client_ip
        )

    async def verify_code(self, email, code, code_type) -> None:
        """Raise on rejection; return normally when the code was accepted and marked verified."""
        if not isinstance(code, str) or not self.code_pattern.fullmatch(code):
            raise InvalidRequestError("Invalid code format")
        email = validate_email(email)
        code_type = validate_type(code_type)

        limit = await self.rate_limiter.check_verification_allowed(email)
        if not limit.allowed:
            raise RateLimitError(limit.retry_after or self.config.retry_after_seconds)

        now = self.clock()
        try:
            record = await self.dao.find_live_code(email, code, code_type, now)
            accepted = record is not None and await self.dao.mark_verified(record.id)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.error(f"Verification lookup failed: {type(e).__name__}: {e}")
            raise StorageError("Failed to verify code") from e

        if not accepted:
            attempts_left = await self._record_failure(email, code_type, now, limit.remaining)
            SecurityUtils.log_security_event(
                "verification_code_rejected",
                {"type": code_type, "attempts_left": attempts_left},
                user_email=email
            )
            raise CodeNotFoundError(attempts_left=attempts_left)

        try:
            await self.dao.delete_other_pending(email, record.id)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.warning(f"Housekeeping after verification failed: {type(e).__name__}: {e}")

        SecurityUtils.log_security_event("verification_code_accepted", {"type": code_type}, user_email=email)

    async def _check_bans(self, email: str, client_ip: Optional[str]):
        try:
            email_banned = await self.ban_dao.is_email_banned(email)
            ip_banned = await self.ban_dao.is_ip_banned(client_ip)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.error(f"Ban lookup failed: {type(e).__name__}: {e}")
            raise StorageError() from e

        if email_banned or ip_banned:
            SecurityUtils.log_security_event(
                "banned_verification_request",
                {"email_banned": email_banned, "ip_banned": ip_banned},
                user_email=email,
                client_ip=client_ip
            )
            if email_banned:
                raise BannedError("This account has been banned. Access denied.")
            raise BannedError("Your IP address has been banned. Access denied.")

    async def _record_failure(self, email: str, code_type: str, now: datetime, remaining: int) -> int:
        try:
            await self.dao.record_failed_attempt(email, code_type, now)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.warning(f"Could not record failed verification attempt: {type(e).__name__}: {e}")
        return max(0, remaining - 1)

    async def _rollback_issued(self, code_id: str):
        try:
            await self.dao.delete_issued(code_id)
        except SQLAlchemyError as e:
            await self.dao.db.rollback()
            logger.error(f"Could not remove undelivered code {code_id}: {type(e).__name__}: {e}")

async def purge_expired_codes(dao: VerificationCodeDAO, config: SecurityConfig = security_config,
                              now: Optional[datetime] = None) -> dict:
    """Delete expired codes plus verified codes and attempts older than the rate window."""
    now = now or SecurityUtils.get_utc_now()
    window_start = now - timedelta(minutes=config.verification_rate_limit_window_minutes)
    return await dao.purge(now, window_start)

async def purge_verification_codes(session_factory, interval_seconds: int):
    """Background task sweeping the verification tables and the in-memory limiter."""
    from services.rate_limiter import get_rate_limiter

    while True:
        try:
            async with session_factory() as session:
                counts = await purge_expired_codes(VerificationCodeDAO(session))
            if any(counts.values()):
                logger.info(f"Purged verification rows: {counts}")
            await get_rate_limiter().cleanup_expired()
            await asyncio.sleep(interval_seconds)
        except Exception as e:
            logger.error(f"Error in verification purge: {e}")
            await asyncio.sleep(60)
