from datetime import datetime
from typing import Optional
from sqlalchemy import delete, update, func
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from models.verification_code import VerificationCode, VerificationAttempt, AttemptKind

class VerificationCodeDAO:
    """
    Persistence for verification codes and their attempt audit rows.
    Bulk statements skip session synchronization: loaded rows may carry naive datetimes
    (SQLite) that cannot be compared in Python against the aware bounds used here.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def delete_pending_for_email(self, email: str) -> int:
        result = await self.db.execute(
            delete(VerificationCode).where(
                VerificationCode.email == email,
                VerificationCode.verified.is_(False)
            ).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def create_code(self, email: str, code_type: str, code: str, created_at: datetime,
                          expires_at: datetime, user_id: Optional[str] = None) -> VerificationCode:
        record = VerificationCode(
            email=email,
            code=code,
            type=code_type,
            user_id=user_id,
            created_at=created_at,
            expires_at=expires_at,
            verified=False
        )
        self.db.add(record)
        await self.db.flush()
        # The issuance audit row shares the code id so a rollback can remove both
        self.db.add(VerificationAttempt(
            id=record.id,
            email=email,
            type=code_type,
            kind=AttemptKind.ISSUED.value,
            created_at=created_at
        ))
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def delete_issued(self, code_id: str):
        await self.db.execute(
            delete(VerificationCode).where(VerificationCode.id == code_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(VerificationAttempt).where(VerificationAttempt.id == code_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

    async def find_live_code(self, email: str, code: str, code_type: str, now: datetime) -> Optional[VerificationCode]:
        result = await self.db.execute(
            select(VerificationCode).where(
                VerificationCode.email == email,
                VerificationCode.code == code,
                VerificationCode.type == code_type,
                VerificationCode.verified.is_(False),
                VerificationCode.expires_at > now
            ).order_by(VerificationCode.created_at.desc())
        )
        return result.scalars().first()

    async def mark_verified(self, code_id: str) -> bool:
        """Flip verified false -> true. Returns False when another request got there first."""
        result = await self.db.execute(
            update(VerificationCode)
            .where(VerificationCode.id == code_id, VerificationCode.verified.is_(False))
            .values(verified=True)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def delete_other_pending(self, email: str, keep_id: str) -> int:
        result = await self.db.execute(
            delete(VerificationCode).where(
                VerificationCode.email == email,
                VerificationCode.verified.is_(False),
                VerificationCode.id != keep_id
            ).execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount

    async def record_failed_attempt(self, email: str, code_type: str, created_at: datetime):
        self.db.add(VerificationAttempt(
            email=email,
            type=code_type,
            kind=AttemptKind.FAILED.value,
            created_at=created_at
        ))
        await self.db.commit()

    async def count_attempts(self, email: str, kind: AttemptKind, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(VerificationAttempt).where(
                VerificationAttempt.email == email,
                VerificationAttempt.kind == kind.value,
                VerificationAttempt.created_at >= since
            )
        )
        return result.scalar_one()

    async def purge(self, now: datetime, window_start: datetime) -> dict:
        """Delete expired codes, verified codes and attempts that fell out of the rate window."""
        expired = await self.db.execute(
            delete(VerificationCode).where(
                VerificationCode.verified.is_(False),
                VerificationCode.expires_at <= now
            ).execution_options(synchronize_session=False)
        )
        verified = await self.db.execute(
            delete(VerificationCode).where(
                VerificationCode.verified.is_(True),
                VerificationCode.created_at < window_start
            ).execution_options(synchronize_session=False)
        )
        attempts = await self.db.execute(
            delete(VerificationAttempt).where(VerificationAttempt.created_at < window_start)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return {
            "expired_codes": expired.rowcount,
            "verified_codes": verified.rowcount,
            "attempts": attempts.rowcount
        }
