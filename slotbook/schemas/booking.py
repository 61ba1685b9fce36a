from pydantic import BaseModel
from typing import Optional


class BookingCreate(BaseModel):
    serviceId: str
    date: str       # YYYY-MM-DD, business-local
    time: str       # HH:MM, business-local
    resourceId: Optional[str] = None
    paymentMethod: str = "card"   # card|cash
    paymentToken: Optional[str] = None  # card payment method id from the client-side form
    notes: Optional[str] = None
    # privileged callers may book on behalf of a client
    clientId: Optional[str] = None
    customerName: Optional[str] = None
    customerEmail: Optional[str] = None
    customerPhone: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class BookingActionRequest(BaseModel):
    action: str  # accepted|declined
    reason: Optional[str] = None


class BookingOut(BaseModel):
    id: str
    productLine: str
    status: str
    paymentMethod: str
    paymentStatus: str
    amountCents: int = 0
    start: str
    end: str
    localDate: Optional[str] = None
    localStart: Optional[str] = None
    localEnd: Optional[str] = None
    clientId: str
    serviceId: Optional[str] = None
    resourceId: Optional[str] = None
    moduleId: Optional[str] = None
    sessionId: Optional[str] = None
    instructorId: Optional[str] = None
    truckId: Optional[str] = None
    hoursLogged: Optional[float] = None
    customerName: str = ""
    customerEmail: str = ""
    customerPhone: str = ""
    notes: Optional[str] = None
    cancellationReason: Optional[str] = None
    statusChangedAt: Optional[str] = None
    createdAt: Optional[str] = None


def booking_out(b, zone=None) -> BookingOut:
    def _iso(v):
        return v.isoformat() if v else None

    from slotbook.services.timezone_service import as_utc
    start, end = as_utc(b.start_at), as_utc(b.end_at)
    return BookingOut(
        id=b.id,
        productLine=b.product_line,
        status=b.status,
        paymentMethod=b.payment_method,
        paymentStatus=b.payment_status,
        amountCents=b.amount_cents or 0,
        start=start.isoformat(),
        end=end.isoformat(),
        localDate=zone.local_date_str(start) if zone else None,
        localStart=zone.local_time_str(start) if zone else None,
        localEnd=zone.local_time_str(end) if zone else None,
        clientId=b.client_id,
        serviceId=b.service_id,
        resourceId=b.resource_id,
        moduleId=b.module_id,
        sessionId=b.session_id,
        instructorId=b.instructor_id,
        truckId=b.truck_id,
        hoursLogged=b.hours_logged,
        customerName=b.customer_name or "",
        customerEmail=b.customer_email or "",
        customerPhone=b.customer_phone or "",
        notes=b.notes,
        cancellationReason=b.cancellation_reason,
        statusChangedAt=_iso(b.status_changed_at),
        createdAt=_iso(b.created_at),
    )


class LogHoursRequest(BaseModel):
    hours: float
