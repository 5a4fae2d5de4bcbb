from typing import Optional

from pydantic import field_validator

from .base import CamelModel

DECISIONS = ("APPROVED", "REJECTED")


class DecisionRequest(CamelModel):
    decision: str
    comment: Optional[str] = None
    signature: Optional[str] = None

    @field_validator("decision", mode="before")
    @classmethod
    def _decision(cls, v):
        v = str(v or "").strip().upper()
        if v not in DECISIONS:
            raise ValueError("Invalid decision. Must be APPROVED or REJECTED")
        return v
