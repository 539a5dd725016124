"""
SQLAlchemy model for per-number daily text counters.
"""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from redialer.shared.database import Base


class SmsSendCounter(Base):
    """Texts sent to one number on one local day."""

    __tablename__ = "sms_send_counters"

    phone_number: Mapped[str] = mapped_column(String(32), primary_key=True)
    local_date: Mapped[date] = mapped_column(Date, primary_key=True)
    sent_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<SmsSendCounter(phone={self.phone_number}, date={self.local_date}, count={self.sent_count})>"
