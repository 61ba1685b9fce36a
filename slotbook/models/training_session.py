from sqlalchemy import String, Integer, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotbook.db.session import Base

class TrainingSession(Base):
    __tablename__ = "training_sessions"
    __table_args__ = (
        UniqueConstraint("module_id", "session_date", "start_time", name="uq_training_session_module_date_start"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    module_id: Mapped[str] = mapped_column(String(36), index=True)
    instructor_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    truck_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)

    session_date: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD business-local
    start_time: Mapped[str] = mapped_column(String(5))  # HH:MM
    end_time: Mapped[str] = mapped_column(String(5))    # HH:MM
    session_type: Mapped[str] = mapped_column(String(10), default="private")  # private|paired|group

    max_capacity: Mapped[int] = mapped_column(Integer, default=1)
    current_capacity: Mapped[int] = mapped_column(Integer, default=0)
    is_fixed: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(12), default="open")  # open|full|in_progress|completed|cancelled
    notes: Mapped[str] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
