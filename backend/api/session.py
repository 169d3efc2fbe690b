from datetime import datetime
from typing import Callable
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from dao.profile_dao import ProfileDAO
from schemas.session import LoginRecordResponse
from services.auth import get_current_user_id
from services.db import get_db
from services.dependencies import get_clock
from services.security import SecurityUtils
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

BANNED_MESSAGE = "This account has been banned. Access denied."

@router.post("/record-login", response_model=LoginRecordResponse)
async def record_login(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock)
):
    """
    Record a completed sign-in for the caller.

    Called by the client after the second factor succeeded and the identity platform
    issued a session. Deactivated profiles are refused so the client can sign out again.
    """
    profile_dao = ProfileDAO(db)
    client_ip = SecurityUtils.get_client_ip(request)

    profile = await profile_dao.get_by_id(user_id)
    if not profile:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if not profile.active:
        SecurityUtils.log_security_event(
            "banned_login_refused",
            {"user_id": profile.id},
            user_email=profile.email,
            client_ip=client_ip
        )
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=BANNED_MESSAGE)

    await profile_dao.record_login(profile, clock(), client_ip)
    await profile_dao.add_log(profile.id, "login", "User logged in", {"email": profile.email, "ip": client_ip})

    logger.info(f"Login recorded for user {profile.id} (count {profile.login_count})")

    return {
        "success": True,
        "login_count": profile.login_count,
        "last_login": profile.last_login
    }
