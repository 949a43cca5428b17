from datetime import datetime
from typing import List, Optional
import uuid
from pydantic import BaseModel
from faceoff.models.webhook_event import ReconciliationOutcome


class TeamTotalResponse(BaseModel):
    team_id: str
    name: str
    charity_name: str
    donation_total: int
    last_updated: Optional[datetime] = None


class TotalsUpdate(BaseModel):
    """One message on the totals feed."""
    team_id: str
    donation_total: int
    last_updated: Optional[datetime] = None


class WebhookEventResponse(BaseModel):
    id: uuid.UUID
    event_id: str
    event_type: str
    livemode: bool
    notification_key: Optional[str] = None
    team_id: Optional[str] = None
    amount: Optional[int] = None
    outcome: ReconciliationOutcome
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    needs_review: bool
    created_at: datetime

    class Config:
        from_attributes = True


class ConfigDiagnostics(BaseModel):
    stripe_secret_key_configured: bool
    stripe_secret_key_well_formed: bool
    stripe_webhook_secret_configured: bool
    stripe_webhook_secret_well_formed: bool
    currency: str
    totals_feed_backend: str
    active_subscriptions: int


class DiagnosticsResponse(BaseModel):
    env: str
    config: ConfigDiagnostics
    processed_notifications: int
    open_failures: int
    recent_events: List[WebhookEventResponse]
