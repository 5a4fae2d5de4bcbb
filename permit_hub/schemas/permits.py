from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator, model_validator

from .base import CamelModel, parse_datetime, blank_to_none

PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
MEASURE_ANSWERS = ("YES", "NO", "N/A")


class MeasureItem(CamelModel):
    id: Optional[int] = None
    question: str = Field(min_length=1)
    answer: Optional[str] = None

    @field_validator("answer", mode="before")
    @classmethod
    def _answer(cls, v):
        v = blank_to_none(v)
        if v is None:
            return None
        v = str(v).upper()
        if v not in MEASURE_ANSWERS:
            raise ValueError("answer must be YES, NO or N/A")
        return v


class WorkerItem(CamelModel):
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    company: Optional[str] = None
    trade: Optional[str] = None
    badge_number: Optional[str] = None
    id_proof_type: Optional[str] = None
    id_proof_number: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Worker name is required")
        return v


class _PermitFields(CamelModel):
    priority: Optional[str] = None
    hazards: Optional[List[str]] = None
    precautions: Optional[List[str]] = None
    equipment: Optional[List[str]] = None
    measures: Optional[List[MeasureItem]] = None
    workers: Optional[List[WorkerItem]] = None
    contractor_name: Optional[str] = None
    contractor_phone: Optional[str] = None
    company_name: Optional[str] = None
    timezone: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v):
        v = blank_to_none(v)
        if v is None:
            return None
        v = str(v).upper()
        if v not in PRIORITIES:
            raise ValueError("Invalid priority")
        return v

    @field_validator("contractor_name", "contractor_phone", "company_name", "timezone", mode="before")
    @classmethod
    def _strip(cls, v):
        return blank_to_none(v)


class PermitCreate(_PermitFields):
    title: str
    description: str = ""
    location: str = ""
    work_type: str
    start_date: datetime
    end_date: datetime

    @field_validator("title", "work_type")
    @classmethod
    def _required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("description", "location", mode="before")
    @classmethod
    def _text(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, v):
        dt = parse_datetime(v)
        if dt is None:
            raise ValueError("Valid date is required")
        return dt

    @model_validator(mode="after")
    def _range(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        return self

    def storage_fields(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"measures", "workers"})
        data["measures"] = [m.model_dump() for m in self.measures or []]
        data["workers"] = [w.model_dump(by_alias=True, exclude_none=True) for w in self.workers or []]
        return data


class PermitUpdate(_PermitFields):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    work_type: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("title", "work_type", mode="before")
    @classmethod
    def _not_blank(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, v):
        return parse_datetime(v)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually sent, keyed by column name."""
        data = {}
        for key in self.model_fields_set:
            value = getattr(self, key)
            if value is None:
                continue
            if key == "measures":
                value = [m.model_dump() for m in value]
            elif key == "workers":
                value = [w.model_dump(by_alias=True, exclude_none=True) for w in value]
            data[key] = value
        return data


class MeasuresUpdate(CamelModel):
    measures: List[MeasureItem]


class PermitExtend(CamelModel):
    new_end_date: datetime
    reason: Optional[str] = None

    @field_validator("new_end_date", mode="before")
    @classmethod
    def _date(cls, v):
        dt = parse_datetime(v)
        if dt is None:
            raise ValueError("Valid end date is required")
        return dt


class PermitClose(CamelModel):
    remarks: Optional[str] = None


class ContractorInfo(CamelModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None


class WorkerRegistration(CamelModel):
    contractor: ContractorInfo
    workers: List[WorkerItem] = Field(min_length=1)
