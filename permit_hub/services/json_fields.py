"""
JSON-in-text list fields.

Permit list fields (hazards, precautions, equipment, measures, workers) are
stored as JSON text so that rows written by the previous system stay readable.
Reads never raise: anything that does not decode to a JSON array becomes [].
"""
import json
from typing import Any, Dict, List

PERMIT_ARRAY_FIELDS = ("hazards", "precautions", "equipment", "measures", "workers")


def parse_json_array(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


def stringify_array(value: Any) -> str:
    if not value:
        return "[]"
    if isinstance(value, str):
        return value
    return json.dumps(list(value))


def permit_for_storage(data: Dict[str, Any]) -> Dict[str, Any]:
    """Stringify only the array keys present in data."""
    transformed = dict(data)
    for key in PERMIT_ARRAY_FIELDS:
        if key in data and data[key] is not None:
            transformed[key] = stringify_array(data[key])
    return transformed
