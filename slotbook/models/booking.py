from sqlalchemy import String, Integer, DateTime, Float, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from slotbook.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index("ix_bookings_line_start_end", "product_line", "start_at", "end_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(36), index=True)  # requester
    product_line: Mapped[str] = mapped_column(String(8), default="shop")  # shop|cdl

    # shop
    service_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    resource_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)  # optional barber
    # cdl
    module_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    instructor_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    truck_id: Mapped[str] = mapped_column(String(36), nullable=True, index=True)
    hours_logged: Mapped[float] = mapped_column(Float, nullable=True)  # training hours credited

    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    # requested, accepted, confirmed, arrived, completed, cancelled, declined, no_show
    status: Mapped[str] = mapped_column(String(20), default="requested", index=True)
    payment_method: Mapped[str] = mapped_column(String(8), default="card")  # card|cash
    # pending, authorized, paid, cash_pending, cash_paid, cancelled, no_show_charged, refunded
    payment_status: Mapped[str] = mapped_column(String(20), default="pending")
    payment_ref: Mapped[str] = mapped_column(String(120), nullable=True)  # authorization / hold reference
    setup_ref: Mapped[str] = mapped_column(String(120), nullable=True)    # card-on-file setup reference
    amount_cents: Mapped[int] = mapped_column(Integer, default=0)

    customer_name: Mapped[str] = mapped_column(String(200), default="")
    customer_email: Mapped[str] = mapped_column(String(320), default="")
    customer_phone: Mapped[str] = mapped_column(String(40), default="")
    notes: Mapped[str] = mapped_column(Text, nullable=True)

    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
