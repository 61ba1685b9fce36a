from pydantic import BaseModel
from typing import List, Optional


class AvailabilityOut(BaseModel):
    date: str
    status: str  # open|closed|blocked
    timezone: str
    durationMinutes: int
    slots: List[str]


class AvailabilityRuleIn(BaseModel):
    dayOfWeek: int  # 0=Sun..6=Sat
    startTime: str  # HH:MM
    endTime: str    # HH:MM
    resourceId: Optional[str] = None
    active: bool = True


class AvailabilityRulePatch(BaseModel):
    dayOfWeek: Optional[int] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    active: Optional[bool] = None


class TimeOffIn(BaseModel):
    # either absolute instants (ISO 8601 with offset) or business-local date + times
    startAt: Optional[str] = None
    endAt: Optional[str] = None
    date: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    endDate: Optional[str] = None
    resourceId: Optional[str] = None
    reason: Optional[str] = None
    # zone for local values; without resourceId the closure shuts only this line
    productLine: str = "shop"
