from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

class LoginRecordResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    login_count: int = Field(..., alias="loginCount")
    last_login: Optional[datetime] = Field(None, alias="lastLogin")
