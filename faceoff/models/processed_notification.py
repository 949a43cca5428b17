from datetime import datetime
from sqlalchemy import BigInteger, DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from faceoff.db.base import Base
from .mixins import utcnow


class ProcessedNotification(Base):
    """
    Idempotency marker. A row existing for a key means the notification has
    been applied; it is written in the same transaction as the team total.
    """
    __tablename__ = "processed_notifications"
    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    team_id: Mapped[str] = mapped_column(String(64), ForeignKey("teams.id"), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
