from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict


class AllocationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    weaponID: int
    userID: int
    notes: Optional[str] = None
    requestingUserID: Optional[int] = None


class ReturnRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    requestingUserID: int
    destination: Literal["stock", "maintenance"] = "stock"
    maintenanceReason: Optional[str] = None


class OverdueQuery(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    userID: Optional[int] = None
    now: Optional[datetime] = None
