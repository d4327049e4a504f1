from typing import Optional

from pydantic import BaseModel, ConfigDict


class WeaponCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    serialNumber: str
    model: str
    caliber: str
    manufacturer: str
    type: str


class WeaponUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    serialNumber: Optional[str] = None
    model: Optional[str] = None
    caliber: Optional[str] = None
    manufacturer: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
