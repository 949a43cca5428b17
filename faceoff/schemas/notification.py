from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class CustomerDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")
    email: Optional[str] = None


class CheckoutSessionObject(BaseModel):
    """The subset of a Stripe Checkout Session a settlement needs."""
    model_config = ConfigDict(extra="ignore")
    id: str
    object: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    payment_status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    customer_details: Optional[CustomerDetails] = None


class EventData(BaseModel):
    model_config = ConfigDict(extra="ignore")
    object: Dict[str, Any] = Field(default_factory=dict)


class VerifiedEvent(BaseModel):
    """A notification whose signature checked out. Nothing else is trusted yet."""
    model_config = ConfigDict(extra="ignore")
    id: str
    type: str
    livemode: bool = False
    created: Optional[int] = None
    data: EventData = Field(default_factory=EventData)


class SettlementInstruction(BaseModel):
    notification_key: str
    team_id: Optional[str] = None
    amount: int
    currency: Optional[str] = None
    payer_email: Optional[str] = None
