from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from .base import CamelModel, parse_datetime, blank_to_none

METER_TYPES = ("electricity", "water", "gas", "transmitter", "temperature", "pressure")


class MeterReadingCreate(CamelModel):
    meter_name: str = Field(min_length=1)
    meter_type: str
    location: Optional[str] = None
    reading_value: float
    unit: Optional[str] = None
    reading_date: Optional[datetime] = None
    notes: Optional[str] = None

    @field_validator("meter_type", mode="before")
    @classmethod
    def _meter_type(cls, v):
        v = str(v or "").strip().lower()
        if v not in METER_TYPES:
            raise ValueError(f"meterType must be one of {', '.join(METER_TYPES)}")
        return v

    @field_validator("meter_name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("reading_date", mode="before")
    @classmethod
    def _date(cls, v):
        return parse_datetime(v)

    @field_validator("location", "unit", "notes", mode="before")
    @classmethod
    def _blank(cls, v):
        return blank_to_none(v)
