from pydantic import BaseModel
from typing import Optional


class WaitlistJoin(BaseModel):
    date: str  # YYYY-MM-DD, business-local
    productLine: str = "shop"
    serviceId: Optional[str] = None


class WaitlistStatusPatch(BaseModel):
    status: str  # waiting|notified|removed
