from pydantic import BaseModel, Field, StrictInt
from faceoff.core.config import settings


class CheckoutRequest(BaseModel):
    team_id: str = Field(min_length=1, max_length=64)
    charity_name: str = Field(min_length=1, max_length=160)
    # whole currency units; strings and fractions are rejected, not coerced
    amount: StrictInt = Field(gt=0, le=settings.MAX_DONATION_AMOUNT)


class CheckoutResponse(BaseModel):
    id: str
    url: str
