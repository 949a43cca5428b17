from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field
from faceoff.models.webhook_event import ReconciliationOutcome


class SettlementStatus(str, Enum):
    APPLIED = "APPLIED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    # admin set to the current total
    UNCHANGED = "UNCHANGED"


class SettlementResult(BaseModel):
    status: SettlementStatus
    notification_key: str
    team_id: str
    amount: int = 0
    previous_total: Optional[int] = None
    new_total: Optional[int] = None
    last_updated: Optional[datetime] = None


class AdjustMode(str, Enum):
    INCREMENT = "increment"
    SET = "set"


class AdjustTotalRequest(BaseModel):
    mode: AdjustMode = AdjustMode.INCREMENT
    amount: int = Field(ge=0, description="amount to add, or the target total for mode=set")


class AdjustTotalResponse(BaseModel):
    team_id: str
    status: SettlementStatus
    previous_total: Optional[int] = None
    new_total: Optional[int] = None


class ReconciliationResponse(BaseModel):
    """Body returned to the provider. Anything but a rejection is a 200."""
    outcome: ReconciliationOutcome
    event_id: str
    notification_key: Optional[str] = None
    reason: Optional[str] = None
