"""
Outbound email collaborator.
Senders expose ``send(to, subject, html, bcc=None)`` and raise EmailDeliveryError when the
message could not be handed to the provider.
"""
import asyncio
import html as html_lib
import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

import resend

from models.verification_code import CodeType
from services.exceptions import EmailDeliveryError, EmailDeliveryTimeout
from services.security import SecurityConfig, SecurityUtils

logger = logging.getLogger(__name__)

BRAND_NAME = "CHEATPLACE-STUDIO"
SITE_URL = "https://cheatplace.studio"

class EmailSender(ABC):
    @abstractmethod
    async def send(self, to: str, subject: str, html: str, bcc: Optional[List[str]] = None) -> None:
        ...

class ResendEmailSender(EmailSender):
    """Sends through the Resend API with a bounded wait per message."""

    def __init__(self, api_key: str, from_address: str, timeout_seconds: float = 10.0):
        resend.api_key = api_key
        self.from_address = from_address
        self.timeout_seconds = timeout_seconds

    async def send(self, to: str, subject: str, html: str, bcc: Optional[List[str]] = None) -> None:
        params = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        if bcc:
            params["bcc"] = bcc

        try:
            # The Resend SDK is synchronous
            response = await asyncio.wait_for(
                asyncio.to_thread(resend.Emails.send, params),
                timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Email provider timed out after {self.timeout_seconds}s")
            raise EmailDeliveryTimeout("Email provider timed out") from e
        except Exception as e:
            logger.error(f"Email provider rejected message: {type(e).__name__}: {e}")
            raise EmailDeliveryError(str(e)) from e

        logger.info(f"Email sent to {SecurityUtils.mask_email(to)} (id={response.get('id') if response else None})")

class LoggingEmailSender(EmailSender):
    """Development sender: writes the message to the log instead of delivering it."""

    async def send(self, to: str, subject: str, html: str, bcc: Optional[List[str]] = None) -> None:
        logger.info(f"Simulated email to {to} (bcc={len(bcc or [])}): {subject}")
        logger.debug(html)

def build_email_sender(config: SecurityConfig) -> EmailSender:
    """Construct the process-wide sender from configuration."""
    if config.resend_api_key:
        return ResendEmailSender(config.resend_api_key, config.email_from, config.email_timeout_seconds)
    logger.warning("RESEND_API_KEY not configured, using LoggingEmailSender")
    return LoggingEmailSender()

def render_verification_email(code: str, code_type: str, expiry_minutes: int) -> Tuple[str, str]:
    """Return (subject, html) for a verification code email."""
    if code_type == CodeType.LOGIN.value:
        intro = "Here is your code to sign in:"
    else:
        intro = "Here is your code to finish creating your account:"

    subject = "Your verification code • CHEATPLACE"
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; background: linear-gradient(135deg, #07174a 0%, #0f2b5b 100%); color: #ffffff;">
        <div style="text-align: center; margin-bottom: 20px;">
          <h1 style="color: #7dd3fc; font-size: 28px; margin: 0;">{BRAND_NAME}</h1>
          <p style="color: #9fb8d9; margin-top: 6px;">Security verification</p>
        </div>
        <div style="background: rgba(255,255,255,0.03); border-radius: 12px; padding: 24px; text-align: center;">
          <p style="color: #cfefff; margin-bottom: 18px;">{intro}</p>
          <div style="display:inline-block; background: rgba(0,0,0,0.35); border-radius: 8px; padding: 16px 26px; margin: 18px 0;">
            <span style="font-size:36px; font-weight:700; letter-spacing:6px; color:#7dd3fc;">{code}</span>
          </div>
          <p style="color: #9fb8d9; font-size: 13px; margin-top: 12px;">This code expires in {expiry_minutes} minutes.</p>
        </div>
        <div style="text-align:center; margin-top: 20px; color:#98bcd6; font-size:12px;">
          <p>If you did not request this code, you can ignore this email.</p>
        </div>
      </div>
    """
    return subject, body

def render_new_offer_email(title: str, description: str, preview_length: int = 200) -> Tuple[str, str]:
    """Return (subject, html) announcing a new offer. Title and description are escaped."""
    preview = description[:preview_length]
    if len(description) > preview_length:
        preview += "..."

    subject = f"New offer available: {title}"
    body = f"""
      <div style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif; max-width: 600px; margin: 0 auto; background-color: #1a1a1a; border-radius: 16px; border: 1px solid #333;">
        <div style="padding: 40px 30px; text-align: center; background: linear-gradient(135deg, #6366f1 0%, #8b5cf6 100%);">
          <h1 style="margin: 0; color: #ffffff; font-size: 28px;">{BRAND_NAME}</h1>
        </div>
        <div style="padding: 40px 30px;">
          <h2 style="margin: 0 0 20px 0; color: #ffffff; font-size: 24px;">New offer available!</h2>
          <h3 style="margin: 0 0 15px 0; color: #a78bfa; font-size: 20px;">{html_lib.escape(title)}</h3>
          <p style="margin: 0 0 30px 0; color: #a1a1aa; font-size: 16px; line-height: 1.6;">{html_lib.escape(preview)}</p>
          <a href="{SITE_URL}" style="display: inline-block; padding: 14px 28px; background: #6366f1; color: #ffffff; text-decoration: none; border-radius: 8px;">See the offer</a>
        </div>
      </div>
    """
    return subject, body
