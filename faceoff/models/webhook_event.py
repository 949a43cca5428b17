from enum import Enum
from typing import Optional
import uuid
from sqlalchemy import BigInteger, Boolean, Enum as SAEnum, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from faceoff.db.base import Base
from .mixins import TimestampMixin


class ReconciliationOutcome(str, Enum):
    APPLIED = "APPLIED"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"


class WebhookEvent(Base, TimestampMixin):
    """
    Outcome log: one row per verified delivery, duplicates included.
    Rows with needs_review set are the manual reconciliation queue.
    """
    __tablename__ = "webhook_events"
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    livemode: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notification_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)
    team_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    outcome: Mapped[ReconciliationOutcome] = mapped_column(SAEnum(ReconciliationOutcome), nullable=False)
    error_code: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
