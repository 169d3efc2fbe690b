"""
Client-side orchestration of the two-factor sign-in and sign-up flow.

The flow keeps the credentials the user typed, asks the API for a code, and only after the
code is accepted calls the identity provider with those credentials. A completed sign-in is then
recorded with the API, which refuses deactivated accounts. Any failure leaves the credentials in
place so the user can retry or resend.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

class VerificationFlowError(Exception):
    """A step of the flow failed; ``message`` is safe to show to the user."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retry_after: Optional[int] = None, attempts_left: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.attempts_left = attempts_left

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429

class IdentityProvider(Protocol):
    """
    The external sign-in/sign-up capability. Both calls raise on failure.

    ``sign_in`` returns the provider session; its ``access_token`` (attribute or mapping key)
    authenticates the login record call.
    """

    async def sign_in(self, email: str, password: str) -> Any:
        ...

    async def sign_up(self, username: str, email: str, password: str) -> Any:
        ...

    async def sign_out(self) -> None:
        ...

class VerificationApiClient:
    """Thin async client for the issuance, verification and login record endpoints."""

    def __init__(self, base_url: str = "", timeout: float = DEFAULT_TIMEOUT,
                 client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def aclose(self):
        await self._client.aclose()

    async def issue_code(self, email: str, code_type: str, user_id: Optional[str] = None) -> str:
        payload = {"email": email, "type": code_type}
        if user_id:
            payload["user_id"] = user_id
        data = await self._post("/issue-verification-code", payload)
        return data.get("message", "Verification code sent")

    async def verify_code(self, email: str, code: str, code_type: str) -> str:
        data = await self._post("/verify-code", {"email": email, "code": code, "type": code_type})
        if not data.get("valid"):
            raise VerificationFlowError(data.get("error", "Invalid or expired code"), status_code=400)
        return data.get("message", "Code verified successfully")

    async def record_login(self, access_token: str) -> dict:
        return await self._post(
            "/record-login", {}, headers={"Authorization": f"Bearer {access_token}"}
        )

    async def _post(self, path: str, payload: dict, headers: Optional[dict] = None) -> dict:
        try:
            response = await self._client.post(path, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise VerificationFlowError("The server took too long to respond. Please try again.") from e
        except httpx.HTTPError as e:
            raise VerificationFlowError("Could not reach the server. Please try again.") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            return data

        retry_after = data.get("retryAfter")
        if retry_after is None and "Retry-After" in response.headers:
            retry_after = int(response.headers["Retry-After"])
        raise VerificationFlowError(
            data.get("error") or "Request failed",
            status_code=response.status_code,
            retry_after=retry_after,
            attempts_left=data.get("attemptsLeft")
        )

@dataclass
class PendingCredentials:
    type: str
    email: str
    password: str
    username: Optional[str] = None

class TwoFactorAuthFlow:
    """
    Sequences credentials -> issue code -> enter code -> verify -> identity call.

    ``resend_available_at`` is set while the API reports a rate limit so a UI can disable
    its resend action until then.
    """

    def __init__(self, api: VerificationApiClient, identity: IdentityProvider,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.api = api
        self.identity = identity
        self.clock = clock
        self.pending: Optional[PendingCredentials] = None
        self.awaiting_code = False
        self.resend_available_at: Optional[datetime] = None

    async def start_login(self, email: str, password: str) -> str:
        self.pending = PendingCredentials("login", email, password)
        return await self._request_code()

    async def start_signup(self, username: str, email: str, password: str) -> str:
        self.pending = PendingCredentials("signup", email, password, username=username)
        return await self._request_code()

    def can_resend(self) -> bool:
        return self.pending is not None and (
            self.resend_available_at is None or self.clock() >= self.resend_available_at
        )

    async def resend(self) -> str:
        """Ask for a new code for the same email and purpose."""
        if self.pending is None:
            raise VerificationFlowError("Nothing to resend. Please start again.")
        if not self.can_resend():
            wait = int((self.resend_available_at - self.clock()).total_seconds())
            raise VerificationFlowError(
                f"Too many attempts. Try again in {wait} seconds.", status_code=429, retry_after=wait
            )
        return await self._request_code()

    async def submit_code(self, code: str) -> Any:
        """Verify the code, then perform the real sign-in or sign-up. Returns the provider's result."""
        if self.pending is None or not self.awaiting_code:
            raise VerificationFlowError("No verification in progress. Please start again.")
        pending = self.pending
        code = code.strip()

        try:
            await self.api.verify_code(pending.email, code, pending.type)
        except VerificationFlowError as e:
            self._note_rate_limit(e)
            raise

        if pending.type == "login":
            result = await self.identity.sign_in(pending.email, pending.password)
            await self._record_login(result)
        else:
            result = await self.identity.sign_up(pending.username, pending.email, pending.password)

        logger.info(f"{pending.type} completed after email verification")
        self.pending = None
        self.awaiting_code = False
        self.resend_available_at = None
        return result

    async def _record_login(self, session: Any):
        token = session.get("access_token") if isinstance(session, dict) else getattr(session, "access_token", None)
        if not token:
            logger.warning("Identity provider session has no access token, login not recorded")
            return
        try:
            await self.api.record_login(token)
        except VerificationFlowError as e:
            if e.status_code == 403:
                # deactivated account: drop the session the provider just opened
                await self.identity.sign_out()
                raise
            logger.warning(f"Could not record login: {e.message}")

    async def _request_code(self) -> str:
        pending = self.pending
        try:
            message = await self.api.issue_code(pending.email, pending.type)
        except VerificationFlowError as e:
            self._note_rate_limit(e)
            raise
        self.awaiting_code = True
        return message

    def _note_rate_limit(self, error: VerificationFlowError):
        if error.rate_limited and error.retry_after:
            self.resend_available_at = self.clock() + timedelta(seconds=error.retry_after)
