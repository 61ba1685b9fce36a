from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from slotbook.db.session import get_db
from slotbook.api.deps import get_clock, get_optional_user, http_error
from slotbook.models.service import Service
from slotbook.models.training_module import TrainingModule
from slotbook.models.user import User
from slotbook.schemas.availability import AvailabilityOut
from slotbook.services.availability_service import day_status
from slotbook.services.booking_service import resolve_resource, resolve_service
from slotbook.services.policy_service import get_policy, is_privileged
from slotbook.services.slot_service import generate_slots
from slotbook.services.timezone_service import Clock

router = APIRouter(tags=["availability"])


@router.get("/availability", response_model=AvailabilityOut)
def availability(date: str, duration: int | None = None, service_id: str | None = None,
                 resource_id: str | None = None,
                 db: Session = Depends(get_db),
                 clock: Clock = Depends(get_clock),
                 me: User | None = Depends(get_optional_user)):
    """Bookable start times (HH:MM, shop-local) for one date. Advisory; re-checked on submit."""
    privileged = is_privileged(me.role if me else None, "shop")
    try:
        if service_id:
            duration = resolve_service(db, service_id, privileged).duration_min
        if not duration:
            raise ValueError("duration or service_id required")
        resource_id = resolve_resource(db, resource_id)
        policy = get_policy(db, "shop")
        slots = generate_slots(db, policy, date, duration, resource_id=resource_id, clock=clock, privileged=privileged)
        status = day_status(db, policy.zone, date, resource_id, policy.operating_days, policy.product_line)
    except (ValueError, LookupError) as e:
        raise http_error(e)
    return AvailabilityOut(date=date, status=status, timezone=policy.zone.name, durationMinutes=duration, slots=slots)


@router.get("/services")
def list_services(db: Session = Depends(get_db)):
    rows = db.query(Service).filter(Service.active == True).order_by(Service.name.asc()).all()  # noqa: E712
    return [
        {"id": s.id, "name": s.name, "description": s.description,
         "durationMin": s.duration_min, "priceCents": s.price_cents}
        for s in rows
    ]


@router.get("/modules")
def list_modules(db: Session = Depends(get_db)):
    rows = (
        db.query(TrainingModule)
        .filter(TrainingModule.active == True)  # noqa: E712
        .order_by(TrainingModule.display_order.asc(), TrainingModule.name.asc())
        .all()
    )
    return [
        {"id": m.id, "name": m.name, "moduleType": m.module_type, "durationMin": m.duration_min,
         "priceCents": m.price_cents, "capacity": m.capacity, "fixedStartTime": m.fixed_start_time,
         "requiresTruck": m.requires_truck}
        for m in rows
    ]


@router.get("/settings/public")
def public_settings(db: Session = Depends(get_db)):
    return {"shop": get_policy(db, "shop").as_dict(), "cdl": get_policy(db, "cdl").as_dict()}
