"""Distance and ETA helpers for tracked vehicles."""
from __future__ import annotations

import math

from .const import (
    EARTH_RADIUS_M,
    FALLBACK_SPEED_MPS,
    MIN_MOVING_SPEED_MPS,
    NEARBY_RESET_M,
    NEARBY_THRESHOLD_M,
)
from .models import TrackedResource


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def eta_minutes(distance_m: float, speed_mps: float | None = None) -> int | None:
    """
    Minutes to cover distance_m.

    Speeds at or below a walking crawl are ignored in favour of a typical
    bus speed.
    """
    speed = speed_mps if speed_mps and speed_mps > MIN_MOVING_SPEED_MPS else FALLBACK_SPEED_MPS
    minutes = distance_m / speed / 60
    if not math.isfinite(minutes):
        return None
    return round(minutes)


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.2f} km"


def distance_category(meters: float) -> str:
    if meters < 100:
        return "very-close"
    if meters < 500:
        return "close"
    if meters < 2000:
        return "medium"
    return "far"


def distance_to(resource: TrackedResource, lat: float, lon: float) -> float | None:
    """Distance from (lat, lon) to the resource, or None without a position."""
    if not resource.has_position:
        return None
    return haversine_meters(lat, lon, resource.lat, resource.lon)


class ProximityAlert:
    """
    Fires once when a vehicle comes within the threshold of the rider.

    Re-arms only after the vehicle moves beyond the reset distance, so
    jitter around the threshold does not repeat the alert.
    """

    def __init__(self, threshold_m: float = NEARBY_THRESHOLD_M, reset_m: float = NEARBY_RESET_M) -> None:
        if reset_m < threshold_m:
            raise ValueError("reset distance must not be below the threshold")
        self._threshold_m = threshold_m
        self._reset_m = reset_m
        self._notified = False

    def check(self, resource: TrackedResource, lat: float, lon: float) -> bool:
        """Return True exactly when the alert should fire."""
        distance = distance_to(resource, lat, lon)
        if distance is None:
            return False
        if distance <= self._threshold_m and not self._notified:
            self._notified = True
            return True
        if distance > self._reset_m:
            self._notified = False
        return False

    def reset(self) -> None:
        self._notified = False
