from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from dao.profile_dao import ProfileDAO
from models.profile import AppRole
from schemas.offer import NotifyOfferRequest, NotifyOfferResponse
from services.auth import require_roles
from services.db import get_db
from services.dependencies import get_email_sender
from services.email import EmailSender
from services.exceptions import EmailDeliveryError
from services.notifications import notify_new_offer
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("/notify-new-offer", response_model=NotifyOfferResponse)
async def notify_new_offer_route(
    data: NotifyOfferRequest,
    caller_id: str = Depends(require_roles(AppRole.VENDOR.value, AppRole.ADMIN.value)),
    db: AsyncSession = Depends(get_db),
    email_sender: EmailSender = Depends(get_email_sender)
):
    emails = await ProfileDAO(db).list_emails()
    if not emails:
        return {"success": True, "message": "No users to notify"}

    try:
        batches = await notify_new_offer(email_sender, emails, data.offer_title, data.offer_description)
    except EmailDeliveryError:
        logger.error(f"New offer notification by {caller_id} failed")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to send notification emails")

    return {
        "success": True,
        "message": f"Emails sent to {len(emails)} users",
        "recipients": len(emails),
        "batches": batches
    }
