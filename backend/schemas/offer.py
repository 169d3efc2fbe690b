from pydantic import BaseModel, Field

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000

class NotifyOfferRequest(BaseModel):
    offer_title: str = Field(..., alias="offerTitle", min_length=1, max_length=MAX_TITLE_LENGTH)
    offer_description: str = Field("", alias="offerDescription", max_length=MAX_DESCRIPTION_LENGTH)

class NotifyOfferResponse(BaseModel):
    success: bool
    message: str
    recipients: int = 0
    batches: int = 0
