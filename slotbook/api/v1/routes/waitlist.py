from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_clock, get_current_user, http_error
from slotbook.core.errors import RateLimited
from slotbook.models.user import User
from slotbook.schemas.waitlist import WaitlistJoin
from slotbook.services import waitlist_service
from slotbook.services.policy_service import PRODUCT_LINES, get_policy
from slotbook.services.timezone_service import Clock

router = APIRouter(tags=["waitlist"])


@router.post("/waitlist")
def join_waitlist(body: WaitlistJoin,
                  db: Session = Depends(get_db),
                  clock: Clock = Depends(get_clock),
                  me: User = Depends(get_current_user)):
    """Ask to hear about openings on a fully booked date. 429 after three joins in an hour."""
    if body.productLine not in PRODUCT_LINES:
        raise HTTPException(status_code=400, detail="invalid productLine")
    try:
        entry = waitlist_service.join_waitlist(db, get_policy(db, body.productLine), me.id, body.date,
                                               service_id=body.serviceId, clock=clock)
    except RateLimited as e:
        raise HTTPException(status_code=429, detail=str(e), headers={"Retry-After": "3600"})
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return waitlist_service.entry_out(entry)


@router.get("/waitlist")
def my_waitlist(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    return [waitlist_service.entry_out(e) for e in waitlist_service.list_for_client(db, me.id)]


@router.delete("/waitlist/{entry_id}")
def leave_waitlist(entry_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        entry = waitlist_service.leave_waitlist(db, entry_id, me.id)
    except LookupError as e:
        raise http_error(e)
    return waitlist_service.entry_out(entry)
