from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_clock, get_current_user, get_payments, http_error
from slotbook.models.user import User
from slotbook.schemas.booking import BookingCreate, BookingOut, CancelRequest, booking_out
from slotbook.services import booking_service
from slotbook.services.payment_service import PaymentAuthority
from slotbook.services.policy_service import get_policy, is_privileged
from slotbook.services.timezone_service import Clock

router = APIRouter(tags=["bookings"])


@router.post("/bookings", response_model=BookingOut)
def create_booking(body: BookingCreate,
                   db: Session = Depends(get_db),
                   clock: Clock = Depends(get_clock),
                   payments: PaymentAuthority = Depends(get_payments),
                   me: User = Depends(get_current_user)):
    """
    Shop booking. 409 with {"reason", "message"} when the slot can't be taken;
    the client should query /availability again.
    """
    privileged = is_privileged(me.role, "shop")
    client = me
    if body.clientId and body.clientId != me.id:
        if not privileged:
            raise HTTPException(status_code=403, detail="Forbidden")
        client = db.get(User, body.clientId)
        if not client:
            raise HTTPException(status_code=404, detail="client not found")
    if body.paymentMethod not in ("card", "cash"):
        raise HTTPException(status_code=400, detail="paymentMethod must be card or cash")
    try:
        policy = get_policy(db, "shop")
        service = booking_service.resolve_service(db, body.serviceId, privileged)
        start = policy.zone.to_instant(body.date, body.time)
        candidate = booking_service.new_booking(
            client_id=client.id,
            product_line="shop",
            service_id=service.id,
            resource_id=booking_service.resolve_resource(db, body.resourceId),
            start_at=start,
            end_at=start + timedelta(minutes=service.duration_min),
            payment_method=body.paymentMethod,
            amount_cents=service.price_cents,
            notes=body.notes,
            customer_name=body.customerName or client.full_name or "",
            customer_email=body.customerEmail or client.email or "",
            customer_phone=body.customerPhone or client.phone or "",
        )
        booking = booking_service.create_booking(
            db, candidate, policy, payments, clock, privileged=privileged, payment_token=body.paymentToken,
        )
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return booking_out(booking, policy.zone)


@router.get("/bookings", response_model=list[BookingOut])
def my_bookings(status: str | None = None, limit: int = 100,
                db: Session = Depends(get_db),
                me: User = Depends(get_current_user)):
    rows = booking_service.list_for_client(db, me.id, status=status, limit=limit)
    zones = {line: get_policy(db, line).zone for line in ("shop", "cdl")}
    return [booking_out(b, zones.get(b.product_line)) for b in rows]


def _visible_booking(db: Session, booking_id: str, me: User):
    b = booking_service.get_booking(db, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Not found")
    if b.client_id != me.id and not is_privileged(me.role, b.product_line):
        raise HTTPException(status_code=404, detail="Not found")
    return b


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    b = _visible_booking(db, booking_id, me)
    return booking_out(b, get_policy(db, b.product_line).zone)


@router.post("/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(booking_id: str, body: CancelRequest | None = None,
                   db: Session = Depends(get_db),
                   clock: Clock = Depends(get_clock),
                   payments: PaymentAuthority = Depends(get_payments),
                   me: User = Depends(get_current_user)):
    b = _visible_booking(db, booking_id, me)
    policy = get_policy(db, b.product_line)
    try:
        b = booking_service.cancel(db, b.id, me.id, payments, policy, clock,
                                   reason=body.reason if body else None)
    except (ValueError, LookupError, PermissionError) as e:
        raise http_error(e)
    return booking_out(b, policy.zone)


@router.post("/bookings/{booking_id}/arrive", response_model=BookingOut)
def arrive(booking_id: str,
           db: Session = Depends(get_db),
           clock: Clock = Depends(get_clock),
           me: User = Depends(get_current_user)):
    b = _visible_booking(db, booking_id, me)
    try:
        b = booking_service.arrive(db, b.id, me.id, clock)
    except (ValueError, LookupError, PermissionError) as e:
        raise http_error(e)
    return booking_out(b, get_policy(db, b.product_line).zone)
