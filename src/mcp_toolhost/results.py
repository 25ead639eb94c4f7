"""Conversion of tool return values into JSON-compatible values."""

import base64
import dataclasses
import math
from collections.abc import Mapping
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel

from .errors import ExecutionFailed


def to_json_value(value: Any) -> Any:
    """
    Map a tool-native value onto JSON primitives.

    Values that are already JSON-compatible pass through unchanged.
    Conversions: mappings -> objects (keys stringified), lists/tuples/sets ->
    arrays, dataclasses and pydantic models -> objects, enums -> their value,
    dates and times -> ISO 8601 strings, Decimal -> number, bytes -> base64.

    Raises:
        ExecutionFailed if the value (or anything nested in it) has no mapping,
        or is a NaN/infinite float
    """
    if value is None or isinstance(value, (bool, str, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ExecutionFailed(f"Tool returned a non-finite number: {value}")
        return value
    if isinstance(value, Enum):
        return to_json_value(value.value)
    if isinstance(value, Mapping):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return [to_json_value(item) for item in sorted(value, key=repr)]
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_json_value(dataclasses.asdict(value))
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return to_json_value(float(value))
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")

    raise ExecutionFailed(
        f"Tool returned a value that cannot be sent as JSON: {type(value).__name__}"
    )
