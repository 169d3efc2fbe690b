from typing import Optional
from pydantic import BaseModel, Field

class BanRequest(BaseModel):
    user_id: Optional[str] = Field(None, alias="userId")
    ban: bool = True

class BanResponse(BaseModel):
    success: bool
    message: str
    email: str
