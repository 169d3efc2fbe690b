"""Bulk email announcements to registered users."""
import logging
from typing import List

from services.email import EmailSender, render_new_offer_email

logger = logging.getLogger(__name__)

BATCH_SIZE = 50
NOREPLY_ADDRESS = "noreply@cheatplace.studio"

def chunked(items: List[str], size: int = BATCH_SIZE) -> List[List[str]]:
    return [items[i:i + size] for i in range(0, len(items), size)]

async def notify_new_offer(sender: EmailSender, emails: List[str], title: str, description: str) -> int:
    """Send the announcement in BCC batches. Returns the number of batches sent."""
    subject, html = render_new_offer_email(title, description)
    batches = chunked(emails)
    for batch in batches:
        await sender.send(NOREPLY_ADDRESS, subject, html, bcc=batch)
    logger.info(f"New offer notification sent to {len(emails)} users in {len(batches)} batch(es)")
    return len(batches)
