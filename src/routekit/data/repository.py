"""Read-only access to bookings, leads and service areas stored in Supabase.

Every query degrades to an empty result when Supabase is not configured or a
query fails; callers then simply warm less.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional

from ..db.supabase import get_supabase_client
from ..models.domain import (
    Address,
    Appointment,
    LatLng,
    PostalArea,
    PostalCodeRange,
    RouteCluster,
    ServiceArea,
)
from ..services.geospatial import centroid

logger = logging.getLogger(__name__)

CLOSED_STATUSES = ["cancelled", "completed"]
APPOINTMENT_COLUMNS = (
    "id, scheduled_date, scheduled_time, duration, status, service_area_id, route_cluster_id, "
    "customers(address, postal_code, city, latitude, longitude)"
)
APPOINTMENT_LIMIT = 1000


def _to_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _location(row: dict) -> Optional[LatLng]:
    lat, lng = row.get("latitude"), row.get("longitude")
    if lat is None or lng is None:
        return None
    try:
        return LatLng(float(lat), float(lng))
    except (TypeError, ValueError) as e:
        logger.warning(f"Ignoring invalid coordinates ({lat}, {lng}): {e}")
        return None


def _address(row: dict) -> Optional[Address]:
    postal_code = (row.get("postal_code") or "").strip()
    if not postal_code:
        return None
    return Address.from_line(row.get("address") or "", postal_code, row.get("city") or "")


def appointment_from_row(row: dict) -> Appointment:
    customer = row.get("customers") or {}
    start = str(row.get("scheduled_time") or "09:00")[:5]
    return Appointment(
        appointment_id=str(row["id"]),
        day=_to_date(row["scheduled_date"]),
        start_time=start,
        duration_min=int(row.get("duration") or 120),
        location=_location(customer),
        address=_address(customer),
        status=str(row.get("status") or "pending"),
        service_area_id=row.get("service_area_id"),
        cluster_id=row.get("route_cluster_id"),
    )


def polygon_from_geojson(geometry: Any) -> Optional[list[tuple[float, float]]]:
    """Outer ring of a GeoJSON Polygon as (lat, lng) pairs."""
    if not isinstance(geometry, dict) or geometry.get("type") != "Polygon":
        return None
    rings = geometry.get("coordinates") or []
    if not rings or len(rings[0]) < 3:
        return None
    return [(float(lat), float(lng)) for lng, lat, *_ in rings[0]]


def service_area_from_row(row: dict) -> ServiceArea:
    ranges = [
        PostalCodeRange(
            start_code=int(str(item["start_code"])[:4]),
            end_code=int(str(item["end_code"])[:4]),
            excluded_codes=tuple(item.get("excluded_codes") or ()),
        )
        for item in row.get("postal_code_ranges") or []
    ]
    polygon = None
    polygons = row.get("boundary_polygons")
    if isinstance(polygons, dict):
        polygons = [polygons]
    for item in polygons or []:
        polygon = polygon_from_geojson(item.get("simplified_polygon") or item.get("polygon"))
        if polygon:
            break
    center = centroid(polygon) if polygon else None
    return ServiceArea(
        area_id=str(row["id"]),
        name=str(row["name"]),
        province=str(row.get("province") or ""),
        postal_ranges=ranges,
        polygon=polygon,
        centroid=LatLng(*center) if center else None,
        calendar_color_id=row.get("calendar_color_id"),
        sales_person_name=row.get("sales_person_name"),
    )


def group_postal_areas(appointments: Iterable[Appointment], limit: int, prefix_length: int = 4) -> list[PostalArea]:
    """Most booked postal prefixes with the mean location of their bookings."""
    buckets: dict[str, list[tuple[float, float]]] = defaultdict(list)
    counts: dict[str, int] = defaultdict(int)
    for apt in appointments:
        if apt.address is None:
            continue
        prefix = "".join(apt.address.postal_code.split()).upper()[:prefix_length]
        if len(prefix) < prefix_length:
            continue
        counts[prefix] += 1
        if apt.location is not None:
            buckets[prefix].append(apt.location.as_tuple())
    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:limit]
    areas: list[PostalArea] = []
    for prefix, count in ranked:
        center = centroid(buckets[prefix])
        areas.append(PostalArea(prefix=prefix, count=count, centroid=LatLng(*center) if center else None))
    return areas


class SupabaseRepository:
    def __init__(self, client_factory: Callable[[], Any] = get_supabase_client) -> None:
        self._client_factory = client_factory

    def _query(self, description: str, run: Callable[[Any], list[dict]]) -> list[dict]:
        client = self._client_factory()
        if client is None:
            return []
        try:
            return run(client) or []
        except Exception as e:
            logger.warning(f"Failed to load {description}: {e}")
            return []

    def _parse(self, rows: list[dict], parse: Callable[[dict], Any], description: str) -> list[Any]:
        parsed = []
        for row in rows:
            try:
                parsed.append(parse(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid {description} row: {e}")
        return parsed

    def appointments_between(self, start: date, end: date) -> list[Appointment]:
        rows = self._query(
            "appointments",
            lambda client: client.table("appointments")
            .select(APPOINTMENT_COLUMNS)
            .gte("scheduled_date", start.isoformat())
            .lte("scheduled_date", end.isoformat())
            .not_.in_("status", CLOSED_STATUSES)
            .order("scheduled_date")
            .limit(APPOINTMENT_LIMIT)
            .execute()
            .data,
        )
        return self._parse(rows, appointment_from_row, "appointment")

    def upcoming_appointments(self, days: int = 7) -> list[Appointment]:
        today = date.today()
        return self.appointments_between(today, today + timedelta(days=days))

    def appointments_for_date(self, day: date) -> list[Appointment]:
        appointments = self.appointments_between(day, day)
        return sorted(appointments, key=lambda apt: apt.start_time)

    def service_areas(self) -> list[ServiceArea]:
        rows = self._query(
            "service areas",
            lambda client: client.table("service_areas")
            .select("*, postal_code_ranges(*), boundary_polygons(polygon, simplified_polygon)")
            .eq("is_active", True)
            .execute()
            .data,
        )
        return self._parse(rows, service_area_from_row, "service area")

    def ungeocoded_leads(self, days: int = 7, limit: int = 500) -> list[Address]:
        since = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        rows = self._query(
            "recent leads",
            lambda client: client.table("leads")
            .select("id, address, postal_code, city")
            .gte("created_at", since)
            .is_("latitude", "null")
            .neq("postal_code", "")
            .limit(limit)
            .execute()
            .data,
        )
        return [address for address in (_address(row) for row in rows) if address is not None]

    def popular_postal_areas(self, days: int = 30, limit: int = 100) -> list[PostalArea]:
        today = date.today()
        return group_postal_areas(self.appointments_between(today - timedelta(days=days), today), limit)

    def route_clusters(self, days: int = 3, limit: int = 10) -> list[RouteCluster]:
        today = date.today()
        rows = self._query(
            "route clusters",
            lambda client: client.table("route_clusters")
            .select("id, date")
            .gte("date", today.isoformat())
            .lte("date", (today + timedelta(days=days)).isoformat())
            .limit(limit)
            .execute()
            .data,
        )
        if not rows:
            return []
        cluster_ids = [str(row["id"]) for row in rows if row.get("id") is not None]
        members = self._query(
            "cluster appointments",
            lambda client: client.table("appointments")
            .select(APPOINTMENT_COLUMNS)
            .in_("route_cluster_id", cluster_ids)
            .not_.in_("status", CLOSED_STATUSES)
            .order("scheduled_time")
            .execute()
            .data,
        )
        by_cluster: dict[str, list[Appointment]] = defaultdict(list)
        for apt in self._parse(members, appointment_from_row, "appointment"):
            by_cluster[str(apt.cluster_id)].append(apt)
        return [
            RouteCluster(cluster_id=str(row["id"]), day=_to_date(row["date"]), appointments=by_cluster[str(row["id"])])
            for row in rows
            if row.get("id") is not None
        ]
