import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError

from slotbook.core.config import settings
from slotbook.core.errors import TransientFailure
from slotbook.db.session import SessionLocal
from slotbook.services import booking_service
from slotbook.services.payment_service import get_payment_authority
from slotbook.services.timezone_service import SystemClock

logger = logging.getLogger(__name__)


def expire_requests() -> dict:
    """Decline requests nobody answered before their start time; their holds are voided."""
    db: Session = SessionLocal()
    try:
        try:
            expired = booking_service.expire_requests(
                db, get_payment_authority(), SystemClock(),
                grace_minutes=settings.REQUEST_EXPIRY_GRACE_MINUTES,
            )
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        except TransientFailure as e:
            db.rollback()
            logger.warning("request expiry deferred: %s", e)
            return {"skipped": True, "reason": "unavailable"}
        return {"expired": expired}
    finally:
        db.close()
