from datetime import datetime
from typing import List, Optional
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from models.profile import Profile, UserRole, ActivityLog

class ProfileDAO:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, user_id: str) -> Optional[Profile]:
        return await self.db.get(Profile, user_id)

    async def has_role(self, user_id: str, role: str) -> bool:
        result = await self.db.execute(
            select(UserRole.id).where(UserRole.user_id == user_id, UserRole.role == role)
        )
        return result.first() is not None

    async def set_active(self, profile: Profile, active: bool):
        profile.active = active
        await self.db.commit()

    async def record_login(self, profile: Profile, at: datetime, ip_address: Optional[str]):
        profile.last_login = at
        profile.login_count = (profile.login_count or 0) + 1
        profile.ip_last_login = ip_address
        await self.db.commit()

    async def list_emails(self) -> List[str]:
        result = await self.db.execute(
            select(Profile.email).where(Profile.email.is_not(None)).order_by(Profile.created_at)
        )
        return [email for email in result.scalars().all() if email]

    async def add_log(self, user_id: Optional[str], action_type: str, message: str,
                      details: Optional[dict] = None) -> ActivityLog:
        entry = ActivityLog(user_id=user_id, action_type=action_type, message=message, details=details)
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def add_role(self, user_id: str, role: str) -> bool:
        """Grant ``role``. Returns False if the user already holds it."""
        if await self.has_role(user_id, role):
            return False
        self.db.add(UserRole(user_id=user_id, role=role))
        await self.db.commit()
        return True
