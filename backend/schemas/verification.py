from typing import Optional
from pydantic import BaseModel, Field

# verification_codes.user_id is a String(36) column
USER_ID_MAX_LENGTH = 36

class IssueCodeRequest(BaseModel):
    """Body of POST /issue-verification-code. Email and type are validated by the service."""
    email: Optional[str] = None
    type: Optional[str] = None
    user_id: Optional[str] = Field(None, max_length=USER_ID_MAX_LENGTH)

class IssueCodeResponse(BaseModel):
    success: bool
    message: str

class VerifyCodeRequest(BaseModel):
    email: Optional[str] = None
    code: Optional[str] = None
    type: Optional[str] = None

class VerifyCodeResponse(BaseModel):
    valid: bool
    message: str
