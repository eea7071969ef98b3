"""
Lossy compact encoding for transit payloads.

compress() drops empty fields, shortens field names through a fixed
bidirectional alias table, rounds coordinates and speed/heading, and
truncates long strings. decompress() only restores field names; truncated
strings stay truncated.
"""
from __future__ import annotations

import enum
import json
from typing import Any

from .const import (
    COORDINATE_FIELDS,
    COORDINATE_PRECISION,
    ESSENTIAL_FIELDS,
    INTEGER_FIELDS,
    MAX_STRING_LENGTH,
    TRUNCATION_MARKER,
)


class FieldAlias(enum.Enum):
    """Long field name → short wire alias."""

    BUS_ID = ("busId", "bid")
    DRIVER_ID = ("driverId", "drv")
    SPEED = ("speed", "spd")
    HEADING = ("heading", "hdg")
    STATUS = ("status", "sts")
    UPDATED_AT = ("updatedAt", "upd")
    CREATED_AT = ("createdAt", "ca")
    ROUTE_NAME = ("routeName", "rn")
    NEXT_STOP = ("nextStop", "nxs")
    ESTIMATED_ARRIVAL = ("estimatedArrival", "eta")
    BUS_NUMBER = ("busNumber", "bn")
    CAPACITY = ("capacity", "cap")
    MODEL = ("model", "mdl")
    YEAR = ("year", "yr")
    START_POINT = ("startPoint", "sp")
    END_POINT = ("endPoint", "ep")
    DISTANCE = ("distance", "dst")
    ESTIMATED_TIME = ("estimatedTime", "et")
    FARE = ("fare", "fr")
    OPERATING_HOURS = ("operatingHours", "oh")
    STOPS = ("stops", "stp")
    LATITUDE = ("latitude", "la")
    LONGITUDE = ("longitude", "lo")
    LAST_MAINTENANCE = ("lastMaintenance", "lm")
    NEXT_MAINTENANCE = ("nextMaintenance", "nm")

    @property
    def long(self) -> str:
        return self.value[0]

    @property
    def short(self) -> str:
        return self.value[1]


def _build_tables() -> tuple[dict[str, str], dict[str, str]]:
    forward = {alias.long: alias.short for alias in FieldAlias}
    reverse = {alias.short: alias.long for alias in FieldAlias}
    if len(forward) != len(FieldAlias) or len(reverse) != len(FieldAlias):
        raise ValueError("FieldAlias contains duplicate names")
    clashes = set(forward) & set(reverse)
    if clashes:
        raise ValueError(f"FieldAlias short names shadow long names: {sorted(clashes)}")
    return forward, reverse


_TO_SHORT, _TO_LONG = _build_tables()


def _encode_value(key: str, value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        if len(value) > MAX_STRING_LENGTH:
            return value[:MAX_STRING_LENGTH] + TRUNCATION_MARKER
        return value
    if isinstance(value, (int, float)):
        if key in COORDINATE_FIELDS:
            return round(float(value), COORDINATE_PRECISION)
        if key in INTEGER_FIELDS:
            return int(round(value))
        return value
    if isinstance(value, dict):
        return _encode_mapping(value)
    if isinstance(value, list):
        return [_encode_value(key, item) for item in value if item is not None]
    return value


def _encode_mapping(record: dict[str, Any]) -> dict[str, Any]:
    return {
        _TO_SHORT.get(key, key): _encode_value(key, value)
        for key, value in record.items()
        if value is not None
    }


def compress(record: dict[str, Any] | None, reduced: bool = False) -> dict[str, Any] | None:
    """
    Encode a record into its compact form.

    With reduced=True only the live-position fields are kept.
    """
    if record is None:
        return None
    if reduced:
        record = {key: record[key] for key in ESSENTIAL_FIELDS if key in record}
    return _encode_mapping(record)


def _decode_value(value: Any) -> Any:
    if isinstance(value, dict):
        return decompress(value)
    if isinstance(value, list):
        return [_decode_value(item) for item in value]
    return value


def decompress(compact: dict[str, Any] | None) -> dict[str, Any] | None:
    """Restore long field names; values are returned as encoded."""
    if compact is None:
        return None
    return {_TO_LONG.get(key, key): _decode_value(value) for key, value in compact.items()}


def encoded_size(payload: Any) -> int:
    """Length of the compact JSON encoding of payload."""
    return len(json.dumps(payload, separators=(",", ":"), default=str))


def compression_ratio(original: Any, compact: Any) -> float:
    """Percentage of the original encoded size saved by the compact form."""
    original_size = encoded_size(original)
    if original_size == 0:
        return 0.0
    return (original_size - encoded_size(compact)) / original_size * 100
