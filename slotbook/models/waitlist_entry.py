from sqlalchemy import String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotbook.db.session import Base

class WaitlistEntry(Base):
    """A client asking to hear about openings on a fully booked date."""
    __tablename__ = "waitlist_entries"
    __table_args__ = (
        UniqueConstraint("client_id", "product_line", "date", name="uq_waitlist_client_line_date"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), index=True)
    product_line: Mapped[str] = mapped_column(String(10), default="shop")
    date: Mapped[str] = mapped_column(String(10), index=True)  # business-local YYYY-MM-DD
    service_id: Mapped[str] = mapped_column(String(36), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="waiting")  # waiting|notified|removed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
