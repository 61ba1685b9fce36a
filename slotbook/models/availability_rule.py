from sqlalchemy import String, Integer, Boolean, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotbook.db.session import Base

class AvailabilityRule(Base):
    __tablename__ = "availability_rules"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    # null = shop-wide opening hours; otherwise a staff resource (barber)
    resource_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    day_of_week: Mapped[int] = mapped_column(Integer, index=True)  # 0=Sun..6=Sat
    start_time: Mapped[str] = mapped_column(String(5))  # HH:MM business-local
    end_time: Mapped[str] = mapped_column(String(5))    # HH:MM business-local
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
