from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies arrive in camelCase; snake_case names are accepted too."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Accept ISO 8601 dates and datetimes ("2024-01-01", "2024-01-01T09:30:00Z").
    Aware values are normalized to naive UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("must be a valid ISO 8601 date")
    else:
        raise ValueError("must be a valid ISO 8601 date")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value
