from pydantic import BaseModel, Field, field_validator

from app.models.driver import DriverStatus


class LocationUpdateRequest(BaseModel):
    latitude:  float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class DriverStatusRequest(BaseModel):
    status: DriverStatus

    @field_validator("status")
    @classmethod
    def self_service_only(cls, v):
        if v not in (DriverStatus.AVAILABLE, DriverStatus.OFFLINE):
            raise ValueError("Drivers may only set themselves available or offline")
        return v
