from pydantic import BaseModel
from typing import Optional


class SessionBookRequest(BaseModel):
    # either join a known session, or ask for module + date + time
    sessionId: Optional[str] = None
    moduleId: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    paymentMethod: str = "card"
    paymentToken: Optional[str] = None
    notes: Optional[str] = None
    studentId: Optional[str] = None  # privileged callers booking for a student


class TrainingSessionIn(BaseModel):
    moduleId: str
    date: str
    startTime: str
    instructorId: Optional[str] = None
    truckId: Optional[str] = None
    notes: Optional[str] = None


class TrainingSessionPatch(BaseModel):
    status: Optional[str] = None
    instructorId: Optional[str] = None
    truckId: Optional[str] = None
    notes: Optional[str] = None


def session_out(s) -> dict:
    return {
        "id": s.id,
        "moduleId": s.module_id,
        "instructorId": s.instructor_id,
        "truckId": s.truck_id,
        "date": s.session_date,
        "startTime": s.start_time,
        "endTime": s.end_time,
        "sessionType": s.session_type,
        "maxCapacity": s.max_capacity,
        "currentCapacity": s.current_capacity,
        "isFixed": s.is_fixed,
        "status": s.status,
        "notes": s.notes,
    }
