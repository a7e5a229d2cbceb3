# sarah_booking/schemas/servicetitan.py
"""
Wire shapes for the ServiceTitan endpoints the booking flow touches.
Only the fields we read are modeled; everything else is ignored.
"""
from __future__ import annotations

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _STModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class Address(_STModel):
    street: str = ""
    unit: Optional[str] = None
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "USA"

    @field_validator("street", "city", "state", "zip", mode="before")
    @classmethod
    def _none_to_blank(cls, v):
        return "" if v is None else v

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


class Contact(_STModel):
    type: str = ""
    value: str = ""


class Customer(_STModel):
    id: int
    name: str = ""
    type: Optional[str] = None
    address: Address = Field(default_factory=Address)

    @field_validator("name", mode="before")
    @classmethod
    def _none_name(cls, v):
        return v or ""

    @field_validator("address", mode="before")
    @classmethod
    def _none_address(cls, v):
        return v or {}


class Location(_STModel):
    id: int
    customer_id: Optional[int] = Field(None, alias="customerId")
    name: str = ""
    address: Address = Field(default_factory=Address)

    @field_validator("address", mode="before")
    @classmethod
    def _none_address(cls, v):
        return v or {}


class CreatedCustomer(_STModel):
    id: int
    name: str = ""
    locations: list[Location] = Field(default_factory=list)


class AppointmentPayload(_STModel):
    start: str
    end: str
    arrival_window_start: str = Field(..., alias="arrivalWindowStart")
    arrival_window_end: str = Field(..., alias="arrivalWindowEnd")


class JobRequest(_STModel):
    customer_id: int = Field(..., alias="customerId")
    location_id: int = Field(..., alias="locationId")
    business_unit_id: int = Field(..., alias="businessUnitId")
    job_type_id: int = Field(..., alias="jobTypeId")
    priority: str = "Normal"
    summary: str
    campaign_id: Optional[int] = Field(None, alias="campaignId")
    appointments: list[AppointmentPayload]

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Job(_STModel):
    id: int
    job_number: Optional[str] = Field(None, alias="jobNumber")
    first_appointment_id: Optional[int] = Field(None, alias="firstAppointmentId")
    customer_id: Optional[int] = Field(None, alias="customerId")
    location_id: Optional[int] = Field(None, alias="locationId")
    created_on: Optional[str] = Field(None, alias="createdOn")


class CapacitySlot(_STModel):
    start: str
    end: str = ""
    is_available: bool = Field(False, alias="isAvailable")
    open_slots: Optional[float] = Field(
        None, validation_alias=AliasChoices("openSlots", "openAvailability", "open_slots")
    )
    total_slots: Optional[float] = Field(
        None, validation_alias=AliasChoices("totalSlots", "totalAvailability", "total_slots")
    )
    business_unit_id: Optional[int] = Field(None, alias="businessUnitId")
    job_type_id: Optional[int] = Field(None, alias="jobTypeId")

    @property
    def has_open_capacity(self) -> bool:
        if not self.is_available:
            return False
        return self.open_slots is None or self.open_slots > 0


class AppointmentRecord(_STModel):
    id: int
    job_id: Optional[int] = Field(None, alias="jobId")
    start: str
    end: str = ""
    status: str = ""

    @property
    def is_canceled(self) -> bool:
        return self.status.lower() in ("canceled", "cancelled")


class Campaign(_STModel):
    id: int
    name: str = ""
    active: bool = True
