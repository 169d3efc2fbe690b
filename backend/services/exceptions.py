"""
Error taxonomy for the verification flow.
Each error carries the HTTP status and the client-facing message; internal detail stays in the logs.
"""
from typing import Optional

class VerificationError(Exception):
    """Base class for errors surfaced by the issuance and verification services."""
    status_code = 500
    default_message = "Verification request failed"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

class InvalidRequestError(VerificationError):
    """Malformed email, code or type. No side effects happened."""
    status_code = 400
    default_message = "Invalid request"

class BannedError(VerificationError):
    status_code = 403
    default_message = "Access denied"

class RateLimitError(VerificationError):
    """Too many issuances or failed verifications inside the rate window."""
    status_code = 429
    default_message = "Too many attempts. Please try again later."

    def __init__(self, retry_after: int, message: Optional[str] = None):
        super().__init__(message)
        self.retry_after = retry_after

class CodeNotFoundError(VerificationError):
    """No live code matched; wrong, used and expired codes are indistinguishable."""
    status_code = 400
    default_message = "Invalid or expired code"

    def __init__(self, attempts_left: Optional[int] = None, message: Optional[str] = None):
        super().__init__(message)
        self.attempts_left = attempts_left

class StorageError(VerificationError):
    status_code = 500
    default_message = "Storage unavailable. Please try again later."

class DeliveryError(VerificationError):
    """The email provider rejected the message or could not be reached."""
    status_code = 502
    default_message = "Failed to send verification email"

class EmailDeliveryError(Exception):
    """Raised by email senders when a message could not be handed to the provider."""

class EmailDeliveryTimeout(EmailDeliveryError):
    """
    The provider did not answer in time. The SDK call keeps running in its worker thread,
    so the message may still be delivered after this is raised.
    """
