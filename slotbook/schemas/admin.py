from pydantic import BaseModel
from typing import List, Optional


class ServiceIn(BaseModel):
    name: str
    durationMin: int = 30
    priceCents: int = 0
    description: Optional[str] = None
    active: bool = True


class ServicePatch(BaseModel):
    name: Optional[str] = None
    durationMin: Optional[int] = None
    priceCents: Optional[int] = None
    description: Optional[str] = None
    active: Optional[bool] = None


class ScheduleWindow(BaseModel):
    dayOfWeek: int
    startTime: str
    endTime: str


class InstructorIn(BaseModel):
    displayName: str
    canTeach: List[str] = []  # road, backing, pretrip
    userId: Optional[str] = None
    active: bool = True
    notes: Optional[str] = None
    schedule: List[ScheduleWindow] = []


class InstructorPatch(BaseModel):
    displayName: Optional[str] = None
    canTeach: Optional[List[str]] = None
    active: Optional[bool] = None
    notes: Optional[str] = None
    schedule: Optional[List[ScheduleWindow]] = None  # replaces the whole weekly schedule


class TruckIn(BaseModel):
    name: str
    licensePlate: Optional[str] = None
    truckType: str = "class_a"
    active: bool = True


class TruckPatch(BaseModel):
    name: Optional[str] = None
    licensePlate: Optional[str] = None
    truckType: Optional[str] = None
    active: Optional[bool] = None


class TrainingModuleIn(BaseModel):
    name: str
    moduleType: str
    durationMin: int = 60
    priceCents: int = 0
    capacity: int = 1
    requiresTruck: bool = False
    requiresInstructor: bool = True
    fixedStartTime: Optional[str] = None
    displayOrder: int = 0
    description: Optional[str] = None
    active: bool = True


class EnrollmentIn(BaseModel):
    studentId: str
    programName: str = "CDL Class A"
    expiresAt: Optional[str] = None


class PolicyPatch(BaseModel):
    productLine: str = "shop"
    bufferMinutes: Optional[int] = None
    minAdvanceHours: Optional[int] = None
    granularityMinutes: Optional[int] = None
    cancellationWindowHours: Optional[int] = None
    operatingDays: Optional[str] = None  # "0,6"; "" clears the restriction
    timezone: Optional[str] = None
    autoConfirmPrivileged: Optional[bool] = None
    pendingBlocks: Optional[bool] = None
