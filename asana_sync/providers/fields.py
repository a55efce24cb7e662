"""
Asana custom field schemas and value coercion.

Templates always produce strings. Before a value is sent to Asana it is
converted to what the field type expects: enum option names become option
GIDs, numbers are parsed, dates are checked. A value that does not fit the
field is logged and dropped while the other fields of the same update still
go through.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import structlog

log = structlog.get_logger(__name__)

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class EnumOption:
    gid: str
    name: str
    enabled: bool = True


@dataclass(frozen=True)
class CustomFieldSchema:
    """Definition of an Asana custom field."""

    gid: str
    name: str
    type: str
    enum_options: tuple[EnumOption, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CustomFieldSchema":
        """Build from a ``/custom_fields/{gid}`` response."""
        return cls(
            gid=str(data["gid"]),
            name=data.get("name") or "",
            # resource_subtype supersedes the deprecated type attribute
            type=data.get("type") or data.get("resource_subtype") or "",
            enum_options=tuple(
                EnumOption(
                    gid=str(option["gid"]),
                    name=option.get("name") or "",
                    enabled=option.get("enabled", True),
                )
                for option in data.get("enum_options") or []
            ),
        )


class FieldSchemaCache:
    """Field schemas fetched during one run.

    Every task of a PR usually carries the same custom fields, so each schema
    is fetched once per run. There is no eviction; create a new cache or call
    ``clear()`` between independent runs.
    """

    def __init__(self) -> None:
        self._schemas: dict[str, CustomFieldSchema] = {}

    def get(self, field_gid: str) -> CustomFieldSchema | None:
        return self._schemas.get(field_gid)

    def set(self, schema: CustomFieldSchema) -> None:
        self._schemas[schema.gid] = schema

    def clear(self) -> None:
        self._schemas.clear()

    def __contains__(self, field_gid: object) -> bool:
        return field_gid in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)


def _find_enum_option(schema: CustomFieldSchema, value: str) -> str | None:
    if not schema.enum_options:
        log.error("enum_field_without_options", field_gid=schema.gid, field_type=schema.type)
        return None

    for option in schema.enum_options:
        if option.name == value:
            return option.gid

    log.error(
        "enum_option_not_found",
        field_gid=schema.gid,
        value=value,
        available=[option.name for option in schema.enum_options],
    )
    return None


def _parse_number(value: str) -> int | float | None:
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    if number.is_integer() and re.fullmatch(r"\s*[-+]?\d+\s*", value):
        return int(number)
    return number


def _is_valid_date(value: str) -> bool:
    if not DATE_PATTERN.match(value):
        return False
    try:
        return date.fromisoformat(value).isoformat() == value
    except ValueError:
        return False


def coerce_field_value(schema: CustomFieldSchema, raw_value: str) -> str | int | float | None:
    """Convert a rendered template value for a custom field.

    Args:
        schema: Field definition
        raw_value: Rendered template value

    Returns:
        The value to send to Asana, or None if it does not fit the field
    """
    if schema.type == "enum":
        return _find_enum_option(schema, raw_value)

    if schema.type in ("text", "multi_line_text"):
        return raw_value

    if schema.type == "number":
        number = _parse_number(raw_value)
        if number is None:
            log.error("invalid_number_value", field_gid=schema.gid, value=raw_value)
        return number

    if schema.type == "date":
        if not _is_valid_date(raw_value):
            log.error("invalid_date_value", field_gid=schema.gid, value=raw_value, expected="YYYY-MM-DD")
            return None
        return raw_value

    log.warning("unsupported_field_type", field_gid=schema.gid, field_type=schema.type)
    return None
