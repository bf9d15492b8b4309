from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional

from app.models.booking import BookingStatus
from app.models.booking_cancellation import CancelledBy
from app.models.payment import PaymentMethod


class BookingCreateRequest(BaseModel):
    customer_id:      Optional[int] = None   # staff only; customers book for themselves
    pickup_location:  str
    dropoff_location: str
    pickup_lat:       Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng:       Optional[float] = Field(None, ge=-180, le=180)
    dropoff_lat:      Optional[float] = Field(None, ge=-90, le=90)
    dropoff_lng:      Optional[float] = Field(None, ge=-180, le=180)
    pickup_datetime:  datetime
    fare_estimate:    Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    distance_km:      Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    duration_minutes: Optional[int] = Field(None, ge=0)
    notes:            Optional[str] = None

    @field_validator("pickup_location", "dropoff_location")
    @classmethod
    def not_empty(cls, v):
        if not v.strip(): raise ValueError("Location cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def check_coordinate_pairs(self) -> "BookingCreateRequest":
        if (self.pickup_lat is None) != (self.pickup_lng is None):
            raise ValueError("pickup_lat and pickup_lng must be given together")
        if (self.dropoff_lat is None) != (self.dropoff_lng is None):
            raise ValueError("dropoff_lat and dropoff_lng must be given together")
        return self


class AssignDriverRequest(BaseModel):
    driver_id: int = Field(..., gt=0)


class UnassignDriverRequest(BaseModel):
    reason: Optional[str] = None

    @field_validator("reason")
    @classmethod
    def strip(cls, v):
        return v.strip() if v and v.strip() else None


class StatusUpdateRequest(BaseModel):
    status:              BookingStatus
    cancellation_reason: Optional[str] = None


class CancelBookingRequest(BaseModel):
    reason:       str
    cancelled_by: CancelledBy = CancelledBy.ADMIN

    @field_validator("reason")
    @classmethod
    def check_reason(cls, v):
        if len(v.strip()) < 5:
            raise ValueError("Cancellation reason must be at least 5 characters")
        return v.strip()


class CompleteBookingRequest(BaseModel):
    fare_amount:    Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes:          Optional[str] = None
