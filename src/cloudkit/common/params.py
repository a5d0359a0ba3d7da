"""Wire parameter encoding for the query and JSON-target protocols.

Query protocol requests are a flat, ordered set of ``key=value`` pairs. List
members are spread over indexed keys whose shape is declared per field:

    Dimensions.member.1.Name / Dimensions.member.1.Value   (object list)
    Statistics.member.1                                    (scalar list)
    Filter.1.Name / Filter.1.Value                         (object list)
    InstanceId.1                                           (scalar list)

Indexes start at 1 and follow the order of the input sequence.
"""

import base64
import json
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence, Union

from cloudkit.common.exceptions import ValidationError

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

ParamValue = Union[str, int]


def format_timestamp(value: datetime) -> str:
    """Format a datetime as UTC ISO-8601 with second precision and a Z suffix.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime(TIMESTAMP_FORMAT)


def whole_seconds(value: timedelta) -> int:
    """Truncate a duration to whole seconds."""
    return int(value.total_seconds())


def _wire_value(value: Any) -> ParamValue:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, timedelta):
        return whole_seconds(value)
    return value


class ParameterSet(dict):
    """Ordered mapping of wire parameter names to values.

    Writing an existing key replaces its value, so a parameter set never holds
    two entries for the same name.
    """

    def __init__(self, action: str, version: Optional[str] = None):
        if action is None:
            raise ValidationError("action is required")
        super().__init__()
        self["Action"] = action
        if version is not None:
            self["Version"] = version

    def add_required(self, name: str, value: Any) -> "ParameterSet":
        if value is None:
            raise ValidationError(
                f"{name} is required", details={"parameter": name}
            )
        self[name] = _wire_value(value)
        return self

    def add_optional(self, name: str, value: Any) -> "ParameterSet":
        """Write the value only when present; absent means the service default."""
        if value is not None:
            self[name] = _wire_value(value)
        return self

    def add_timestamp(self, name: str, value: Optional[datetime]) -> "ParameterSet":
        if value is None:
            raise ValidationError(
                f"{name} is required", details={"parameter": name}
            )
        self[name] = format_timestamp(value)
        return self

    def add_seconds(self, name: str, value: Optional[timedelta]) -> "ParameterSet":
        if value is None:
            raise ValidationError(
                f"{name} is required", details={"parameter": name}
            )
        self[name] = whole_seconds(value)
        return self

    def add_list(
        self,
        pattern: str,
        items: Optional[Iterable[Any]],
        fields: Optional[Sequence[str]] = None,
    ) -> "ParameterSet":
        """Expand a list into indexed members.

        ``pattern`` holds an ``{n}`` placeholder for the 1-based index, e.g.
        ``"Dimensions.member.{n}"`` or ``"Filter.{n}"``. With ``fields`` each
        item is an object and every named attribute gets its own key
        (``Filter.1.Name``); without, items are scalars (``InstanceId.1``).
        """
        if items is None:
            return self

        for n, item in enumerate(items, start=1):
            prefix = pattern.format(n=n)
            if fields:
                for field_name in fields:
                    self[f"{prefix}.{field_name}"] = _wire_value(
                        _field(item, field_name)
                    )
            else:
                self[prefix] = _wire_value(item)
        return self


def _field(item: Any, field_name: str) -> Any:
    if isinstance(item, dict):
        return item[field_name]
    return getattr(item, field_name.lower())


def _json_ready(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _json_ready(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_json_ready(v) for v in value if v is not None]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, timedelta):
        return whole_seconds(value)
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(value).decode("ascii")
    return value


def json_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None values (recursively) and convert enums, datetimes and bytes.

    Naive datetimes are taken as UTC, as in ``format_timestamp``. Binary values
    are base64 encoded.
    """
    return _json_ready(fields)


def encode_json(fields: Dict[str, Any]) -> str:
    """Serialize a JSON-target protocol body. Null fields are omitted entirely."""
    return json.dumps(json_fields(fields), separators=(",", ":"))
