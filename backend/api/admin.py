from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from dao.ban_dao import BanDAO
from dao.profile_dao import ProfileDAO
from models.profile import AppRole
from schemas.admin import BanRequest, BanResponse
from services.auth import require_roles
from services.db import get_db
from services.security import SecurityUtils
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/ban-user", response_model=BanResponse)
async def ban_user(
    data: BanRequest,
    request: Request,
    admin_id: str = Depends(require_roles(AppRole.ADMIN.value)),
    db: AsyncSession = Depends(get_db)
):
    """Ban or unban a user: profile flag, banned email list and activity log."""
    if not data.user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")

    profile_dao = ProfileDAO(db)
    ban_dao = BanDAO(db)

    profile = await profile_dao.get_by_id(data.user_id)
    if not profile or not profile.email:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    await profile_dao.set_active(profile, not data.ban)

    if data.ban:
        added = await ban_dao.ban_email(profile.email, banned_by=admin_id, reason="Banned by administrator")
        if not added:
            logger.info(f"Email for user {profile.id} was already banned")
    else:
        await ban_dao.unban_email(profile.email)

    await profile_dao.add_log(
        profile.id,
        "user_banned" if data.ban else "user_unbanned",
        "User banned" if data.ban else "User unbanned",
        {"by": admin_id}
    )

    SecurityUtils.log_security_event(
        "user_banned" if data.ban else "user_unbanned",
        {"user_id": profile.id, "admin_id": admin_id},
        user_email=profile.email,
        client_ip=SecurityUtils.get_client_ip(request)
    )

    return {
        "success": True,
        "message": "User banned successfully" if data.ban else "User unbanned successfully",
        "email": profile.email
    }
