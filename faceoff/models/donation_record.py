from datetime import datetime
from enum import Enum
from typing import Optional
import uuid
from sqlalchemy import BigInteger, CheckConstraint, DateTime, Enum as SAEnum, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from faceoff.db.base import Base
from .mixins import utcnow


class DonationSource(str, Enum):
    PROVIDER = "PROVIDER"
    ADMIN = "ADMIN"


class DonationRecord(Base):
    """Append-only audit fact, one per applied notification. Never updated."""
    __tablename__ = "donation_records"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_donation_records_amount_positive"),
    )
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id: Mapped[str] = mapped_column(String(64), ForeignKey("teams.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    notification_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source: Mapped[DonationSource] = mapped_column(
        SAEnum(DonationSource), default=DonationSource.PROVIDER, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
