"""
FastAPI dependencies wiring the process-wide collaborators into request handlers.
The email sender is built once in the application lifespan and kept on ``app.state``.
"""
from datetime import datetime
from typing import Callable
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from dao.ban_dao import BanDAO
from dao.verification_code_dao import VerificationCodeDAO
from services.db import get_db
from services.email import EmailSender, build_email_sender
from services.security import security_config, SecurityUtils
from services.verification import VerificationService

def get_email_sender(request: Request) -> EmailSender:
    sender = getattr(request.app.state, "email_sender", None)
    if sender is None:
        sender = build_email_sender(security_config)
        request.app.state.email_sender = sender
    return sender

def get_clock() -> Callable[[], datetime]:
    return SecurityUtils.get_utc_now

def get_verification_service(
    db: AsyncSession = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender),
    clock: Callable[[], datetime] = Depends(get_clock)
) -> VerificationService:
    return VerificationService(
        VerificationCodeDAO(db),
        BanDAO(db),
        email_sender,
        config=security_config,
        clock=clock
    )
