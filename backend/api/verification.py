from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from schemas.verification import IssueCodeRequest, IssueCodeResponse, VerifyCodeRequest, VerifyCodeResponse
from services.dependencies import get_verification_service
from services.exceptions import (
    VerificationError, InvalidRequestError, RateLimitError, CodeNotFoundError
)
from services.security import SecurityUtils
from services.verification import VerificationService
import logging

logger = logging.getLogger(__name__)

router = APIRouter()

async def _read_body(request: Request, schema):
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise InvalidRequestError("Invalid JSON body")
    try:
        return schema.model_validate(body)
    except ValidationError:
        raise InvalidRequestError("Invalid request format")

def _error_response(exc: VerificationError, content: dict) -> JSONResponse:
    headers = {}
    if isinstance(exc, RateLimitError):
        content["retryAfter"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    if isinstance(exc, CodeNotFoundError) and exc.attempts_left is not None:
        content["attemptsLeft"] = exc.attempts_left
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

@router.post("/issue-verification-code", response_model=IssueCodeResponse)
async def issue_verification_code(
    request: Request,
    service: VerificationService = Depends(get_verification_service)
):
    """Create a code for the email and send it. The code itself is never returned."""
    client_ip = SecurityUtils.get_client_ip(request)
    try:
        data = await _read_body(request, IssueCodeRequest)
        if not data.email or not data.type:
            raise InvalidRequestError("Email and type are required")
        await service.request_code(data.email, data.type, user_id=data.user_id, client_ip=client_ip)
    except VerificationError as exc:
        return _error_response(exc, {"error": exc.message})

    return {"success": True, "message": "Verification code sent"}

@router.post("/verify-code", response_model=VerifyCodeResponse)
async def verify_code(
    request: Request,
    service: VerificationService = Depends(get_verification_service)
):
    """Check a code. Success only unblocks the caller's own sign-in or sign-up call."""
    try:
        data = await _read_body(request, VerifyCodeRequest)
        if not data.email or not data.code or not data.type:
            raise InvalidRequestError("Email, code and type are required")
        await service.verify_code(data.email, data.code, data.type)
    except VerificationError as exc:
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error(f"Verification failed with {exc.status_code}: {exc.message}")
        return _error_response(exc, {"valid": False, "error": exc.message})

    return {"valid": True, "message": "Code verified successfully"}
