"""
Shared schema metadata and storage value conversion.

Every column value that crosses into SQL is one of
``None | bool | int | float | str | datetime | date | dict | list``;
``to_storage`` maps that closed set onto what the drivers bind.
"""
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Union
from uuid import UUID

from sqlalchemy import MetaData

metadata = MetaData()

STORAGE_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

SqlValue = Union[None, bool, int, float, str, datetime, date, Dict[str, Any], List[Any]]


def format_timestamp(value: datetime) -> str:
    """Render a datetime the way timestamp columns store it (naive UTC)."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(STORAGE_TIMESTAMP_FORMAT)


def parse_timestamp(value: Union[str, datetime, None]) -> Union[datetime, None]:
    """Read a stored timestamp back as an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).replace("T", " ")
        try:
            parsed = datetime.strptime(text[:19], STORAGE_TIMESTAMP_FORMAT)
        except ValueError:
            parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_storage(value: Any) -> Any:
    """Convert a Python value into something every DBAPI driver binds."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return to_storage(value.value)
    if isinstance(value, UUID):
        return str(value)
    return str(value)
