from typing import Optional
from sqlalchemy import delete
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from models.ban import BannedEmail, BannedIP

class BanDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def is_email_banned(self, email: str) -> bool:
        result = await self.db.execute(select(BannedEmail.id).where(BannedEmail.email == email))
        return result.first() is not None

    async def is_ip_banned(self, ip_address: Optional[str]) -> bool:
        if not ip_address:
            return False
        result = await self.db.execute(select(BannedIP.id).where(BannedIP.ip_address == ip_address))
        return result.first() is not None

    async def ban_email(self, email: str, banned_by: Optional[str] = None, reason: Optional[str] = None) -> bool:
        """Add an email to the ban list. Returns False if it was already banned."""
        if await self.is_email_banned(email):
            return False
        self.db.add(BannedEmail(email=email, banned_by=banned_by, reason=reason))
        await self.db.commit()
        return True

    async def unban_email(self, email: str) -> int:
        result = await self.db.execute(delete(BannedEmail).where(BannedEmail.email == email))
        await self.db.commit()
        return result.rowcount
