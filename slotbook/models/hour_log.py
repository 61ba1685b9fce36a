from sqlalchemy import String, DateTime, Float
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotbook.db.session import Base

class HourLog(Base):
    __tablename__ = "hour_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    student_id: Mapped[str] = mapped_column(String(36), index=True)
    enrollment_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    module_id: Mapped[str] = mapped_column(String(36), nullable=True)
    session_date: Mapped[str] = mapped_column(String(10))
    hours: Mapped[float] = mapped_column(Float)
    logged_by: Mapped[str] = mapped_column(String(36))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
