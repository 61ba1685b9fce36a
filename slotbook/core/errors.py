"""
Error taxonomy for the booking core.

Input validation errors subclass ValueError so callers can keep the plain
`except ValueError -> 400` handling. Conflicts carry a closed reason code and
are never collapsed into a generic error. Downstream outages are a separate
kind: retry with backoff is the caller's business.
"""
from enum import Enum


class InvalidTimeInput(ValueError):
    pass


class InvalidInterval(ValueError):
    pass


class InvalidTransition(ValueError):
    pass


class PaymentNotAuthorized(ValueError):
    pass


class TransientFailure(RuntimeError):
    """Storage or payment authority unavailable."""


class ConflictReason(str, Enum):
    OUTSIDE_AVAILABILITY = "OutsideAvailability"
    BLACKOUT_CONFLICT = "BlackoutConflict"
    SLOT_TAKEN = "SlotTaken"
    DUPLICATE_REQUEST = "DuplicateRequest"
    TOO_SOON = "TooSoon"
    NO_INSTRUCTOR_AVAILABLE = "NoInstructorAvailable"
    NO_VEHICLE_AVAILABLE = "NoVehicleAvailable"
    SESSION_FULL = "SessionFull"


_DEFAULT_MESSAGES = {
    ConflictReason.OUTSIDE_AVAILABILITY: "Selected time is outside of availability.",
    ConflictReason.BLACKOUT_CONFLICT: "Selected time is unavailable.",
    ConflictReason.SLOT_TAKEN: "Slot is no longer available. Please choose another time.",
    ConflictReason.DUPLICATE_REQUEST: "You already have a booking request for this time.",
    ConflictReason.TOO_SOON: "Bookings must be made further in advance.",
    ConflictReason.NO_INSTRUCTOR_AVAILABLE: "No instructor available for this time slot.",
    ConflictReason.NO_VEHICLE_AVAILABLE: "No truck available for this time slot.",
    ConflictReason.SESSION_FULL: "This session is full.",
}


class BookingConflict(Exception):
    def __init__(self, reason: ConflictReason, message: str | None = None):
        self.reason = ConflictReason(reason)
        self.message = message or _DEFAULT_MESSAGES[self.reason]
        super().__init__(f"{self.reason.value}: {self.message}")

    def to_dict(self) -> dict:
        return {"reason": self.reason.value, "message": self.message}


class CancellationRefused(ValueError):
    """Requester may not cancel (window passed or already charged)."""


class RateLimited(Exception):
    """Too many requests of one kind from one user inside the window."""
