from datetime import datetime
from typing import Optional
from sqlalchemy import BigInteger, CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from faceoff.db.base import Base
from .mixins import TimestampMixin


class Team(Base, TimestampMixin):
    """
    One side of the faceoff. donation_total only ever grows, and only the
    settlement applier writes it.
    """
    __tablename__ = "teams"
    __table_args__ = (
        CheckConstraint("donation_total >= 0", name="ck_teams_donation_total_nonneg"),
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    charity_name: Mapped[str] = mapped_column(String(160), nullable=False)
    # whole currency units
    donation_total: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
