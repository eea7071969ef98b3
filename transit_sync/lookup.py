"""
Resolving what to track: bus number, PNR index, or route members.

Also holds route search between two cities.
"""
from __future__ import annotations

import dataclasses
import logging
import re

from .const import (
    MAX_ROUTE_RESULTS,
    PNR_INDEX_PATH,
    RESOURCES_PATH,
    ROUTE_MEMBERS_KEY,
    ROUTES_PATH,
)
from .errors import StoreError
from .store import DataStore

_LOGGER = logging.getLogger(__name__)

MODE_BUS = "bus"
MODE_PNR = "pnr"
MODE_ROUTE = "route"

DEFAULT_OPERATING_HOURS = {"start": "06:00", "end": "22:00"}

_UNSAFE_KEY_CHARS = re.compile(r"[.#$\[\]]")


@dataclasses.dataclass(frozen=True)
class RouteInfo:
    route_id: str
    name: str
    from_city: str
    to_city: str
    distance: float = 0
    estimated_duration: int = 0   # minutes
    stops: list[str] = dataclasses.field(default_factory=list)
    operating_hours: dict[str, str] = dataclasses.field(default_factory=lambda: dict(DEFAULT_OPERATING_HOURS))


@dataclasses.dataclass(frozen=True)
class BusOnRoute:
    bus_id: str
    route_id: str
    route_name: str = ""
    current_status: str = "unknown"
    lat: float | None = None
    lon: float | None = None
    speed: float | None = None
    heading: float | None = None
    next_stop: str | None = None
    estimated_arrival: int | None = None
    updated_at: int | None = None


@dataclasses.dataclass(frozen=True)
class RouteSearchResult:
    route: RouteInfo
    buses: list[BusOnRoute]

    @property
    def total_buses(self) -> int:
        return len(self.buses)

    @property
    def active_buses(self) -> int:
        return sum(1 for bus in self.buses if bus.current_status == "active")


def sanitize_key(key: str) -> str:
    """Replace characters the backend does not allow in path segments."""
    return _UNSAFE_KEY_CHARS.sub("_", key)


def parse_route_query(query: str) -> tuple[str, str] | None:
    """Parse "A to B", "A - B" or "A ... B" into (from, to)."""
    normalized = query.lower().strip()

    match = re.match(r"^(.+?)\s+to\s+(.+)$", normalized)
    if match:
        return match.group(1).strip(), match.group(2).strip()

    match = re.match(r"^(.+?)\s*-\s*(.+)$", normalized)
    if match:
        return match.group(1).strip(), match.group(2).strip()

    words = [word for word in normalized.split() if len(word) > 2]
    if len(words) >= 2:
        return words[0], words[-1]
    return None


def generate_route_key(from_city: str, to_city: str) -> str:
    def _normalize(city: str) -> str:
        return re.sub(r"[^a-z0-9]", "", city.lower())

    return f"{_normalize(from_city)}_{_normalize(to_city)}"


async def route_member_ids(store: DataStore, route_key: str) -> list[str]:
    """Ids of the vehicles assigned to a route."""
    members = await store.read(f"{ROUTES_PATH}/{route_key}/{ROUTE_MEMBERS_KEY}")
    if not isinstance(members, dict):
        return []
    return list(members)


async def resolve_resource_ids(store: DataStore, mode: str, query: str) -> list[str]:
    """
    Turn a rider's query into the ids to track.

    Lookup failures are logged and resolve to nothing.
    """
    query = query.strip()
    if not query:
        return []
    if mode == MODE_BUS:
        return [query]

    try:
        if mode == MODE_PNR:
            entry = await store.read(f"{PNR_INDEX_PATH}/{sanitize_key(query)}")
            bus_id = entry.get("busId") if isinstance(entry, dict) else None
            return [bus_id] if bus_id else []
        if mode == MODE_ROUTE:
            parsed = parse_route_query(query)
            if parsed is None:
                return []
            return await route_member_ids(store, generate_route_key(*parsed))
    except StoreError as exc:
        _LOGGER.warning("Lookup of %s '%s' failed: %s", mode, query, exc)
        return []

    raise ValueError(f"Unknown lookup mode: {mode}")


async def buses_on_route(store: DataStore, route_key: str) -> list[BusOnRoute]:
    """Vehicles on a route; unreadable ones are left out."""
    try:
        member_ids = await route_member_ids(store, route_key)
    except StoreError as exc:
        _LOGGER.warning("Could not list buses on %s: %s", route_key, exc)
        return []

    buses = []
    for bus_id in member_ids:
        try:
            data = await store.read(f"{RESOURCES_PATH}/{bus_id}")
        except StoreError as exc:
            _LOGGER.warning("Could not read bus %s on %s: %s", bus_id, route_key, exc)
            continue
        if not isinstance(data, dict):
            continue
        buses.append(
            BusOnRoute(
                bus_id=bus_id,
                route_id=route_key,
                route_name=data.get("routeName") or "",
                current_status=data.get("status") or "unknown",
                lat=data.get("lat"),
                lon=data.get("lon"),
                speed=data.get("speed"),
                heading=data.get("heading"),
                next_stop=data.get("nextStop"),
                estimated_arrival=data.get("estimatedArrival"),
                updated_at=data.get("updatedAt"),
            )
        )
    return buses


async def _direct_route(store: DataStore, route_key: str) -> RouteSearchResult | None:
    try:
        data = await store.read(f"{ROUTES_PATH}/{route_key}")
    except StoreError as exc:
        _LOGGER.warning("Could not read route %s: %s", route_key, exc)
        return None
    if not isinstance(data, dict):
        return None
    route = RouteInfo(
        route_id=route_key,
        name=data.get("name") or f"{data.get('fromCity')} to {data.get('toCity')}",
        from_city=data.get("fromCity", ""),
        to_city=data.get("toCity", ""),
        distance=data.get("distance") or 0,
        estimated_duration=data.get("estimatedDuration") or 0,
        stops=list(data.get("stops") or []),
        operating_hours=data.get("operatingHours") or dict(DEFAULT_OPERATING_HOURS),
    )
    return RouteSearchResult(route=route, buses=await buses_on_route(store, route_key))


async def search_routes(store: DataStore, query: str) -> list[RouteSearchResult]:
    """Direct and reverse routes matching a "from to" query."""
    parsed = parse_route_query(query)
    if parsed is None:
        return []

    origin, destination = parsed
    results: list[RouteSearchResult] = []
    keys = dict.fromkeys(
        (generate_route_key(origin, destination), generate_route_key(destination, origin))
    )
    for key in keys:
        result = await _direct_route(store, key)
        if result is not None:
            results.append(result)
    return results[:MAX_ROUTE_RESULTS]
