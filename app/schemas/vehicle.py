from pydantic import BaseModel, Field
from typing import Optional


class AssignVehicleDriverRequest(BaseModel):
    driver_id: int = Field(..., gt=0)
    notes:     Optional[str] = None


class UnassignVehicleDriverRequest(BaseModel):
    reason: Optional[str] = None
