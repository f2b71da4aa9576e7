# tracedock/schemas/common.py
"""
Shared schema building blocks.

- `ApiModel`: camelCase on the wire (appName, sessionId, ...), snake_case in Python.
- `Timestamp`: accepts ISO 8601 strings, stores naive UTC datetimes,
  serializes back to ISO 8601 with a trailing "Z".
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, PlainSerializer
from pydantic.alias_generators import to_camel

from tracedock.utils.timeutil import isoformat_z, parse_timestamp


def _validate_timestamp(value: Any) -> datetime:
    if not isinstance(value, (str, datetime)):
        raise ValueError("Expected an ISO 8601 datetime string")
    try:
        return parse_timestamp(value)
    except (ValueError, OverflowError):
        raise ValueError("Invalid ISO 8601 datetime") from None


Timestamp = Annotated[
    datetime,
    BeforeValidator(_validate_timestamp),
    PlainSerializer(isoformat_z, return_type=str),
]


class ApiModel(BaseModel):
    """Base for every request/response model."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SuccessResponse(ApiModel):
    success: bool = True
