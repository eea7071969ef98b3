"""
Data model for the adaptive synchronization layer.

Pure data classes with no network or event-loop dependencies.
"""
from __future__ import annotations

import dataclasses
import enum
from typing import Any

from .const import QUALITY_EXCELLENT, QUALITY_GOOD, QUALITY_POOR


class QualityClass(str, enum.Enum):
    """Discrete network-quality tier."""

    POOR = QUALITY_POOR
    GOOD = QUALITY_GOOD
    EXCELLENT = QUALITY_EXCELLENT


class SessionState(str, enum.Enum):
    """Connection state of a TrackingSession."""

    IDLE = "idle"
    CONNECTING = "connecting"
    TRACKING = "tracking"
    DISCONNECTED = "disconnected"


@dataclasses.dataclass(frozen=True)
class NetworkSample:
    """Raw connection metrics as reported by a connection-info provider."""

    effective_type: str
    downlink_mbps: float
    rtt_ms: int


@dataclasses.dataclass(frozen=True)
class OperatingConfig:
    """Tuned intervals and flags for one QualityClass."""

    poll_interval_ms: int
    compress: bool
    reduced_payload: bool
    batch: bool
    max_retries: int


@dataclasses.dataclass(frozen=True)
class NetworkStatus:
    """Read-only view of the network handed to the UI layer."""

    quality: QualityClass
    effective_type: str
    downlink_mbps: float
    rtt_ms: int
    is_online: bool


@dataclasses.dataclass(frozen=True)
class TrackedResource:
    """Last known state of a live-tracked vehicle."""

    resource_id: str
    lat: float | None = None
    lon: float | None = None
    speed_mps: float | None = None
    heading_deg: float | None = None
    status_tag: str = "unknown"
    updated_at_ms: int = 0
    route_name: str | None = None

    @classmethod
    def from_record(cls, resource_id: str, record: dict[str, Any]) -> TrackedResource:
        """Build a TrackedResource from a backend record (camelCase keys)."""
        return cls(
            resource_id=str(record.get("busId") or resource_id),
            lat=record.get("lat"),
            lon=record.get("lon"),
            speed_mps=record.get("speed"),
            heading_deg=record.get("heading"),
            status_tag=record.get("status") or "unknown",
            updated_at_ms=int(record.get("updatedAt") or 0),
            route_name=record.get("routeName"),
        )

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None


@dataclasses.dataclass(frozen=True)
class TrackingSnapshot:
    """
    Observable state of a TrackingSession.

    Sessions publish a new instance via dataclasses.replace() on every change.
    """

    data: TrackedResource | None = None
    connection_status: SessionState = SessionState.IDLE
    last_update_ms: int | None = None


@dataclasses.dataclass(frozen=True)
class QueuedWrite:
    """A write waiting in the OfflineQueue for connectivity to return."""

    target_key: str
    payload: Any
    enqueued_at_ms: int
