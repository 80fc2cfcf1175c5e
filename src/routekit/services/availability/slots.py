"""Slot context for a booking day: existing stops, travel between them and ranked free slots."""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Optional

from ...config import settings
from ...models.domain import Appointment, LatLng, TravelMode
from ..geospatial import haversine_km
from ..routing.optimizer import format_time, parse_time

if TYPE_CHECKING:
    from ...cache.routes import RouteCache
    from ...data.repository import SupabaseRepository

logger = logging.getLogger(__name__)

URBAN_SPEED_KMH = 40.0
PARKING_BUFFER_MIN = 5
TRAVEL_PENALTY_PER_MIN = 2
MIN_BETWEEN_EFFICIENCY = 20
HIGH_EFFICIENCY = 70
MODERATE_EFFICIENCY = 50
MAX_RECOMMENDATIONS = 3


@dataclass(slots=True)
class TravelLeg:
    from_appointment: str
    to_appointment: str
    distance_m: int
    duration_min: int
    source: str


@dataclass(slots=True)
class TimeSlot:
    time: str
    available: bool = True
    travel_from_previous: Optional[int] = None
    travel_to_next: Optional[int] = None
    efficiency: int = 100


@dataclass(slots=True)
class SlotContext:
    day: date
    appointments: list[Appointment]
    legs: list[TravelLeg] = field(default_factory=list)
    cluster: Optional[dict] = None
    slots: list[TimeSlot] = field(default_factory=list)
    recommended: list[TimeSlot] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "day": self.day.isoformat(),
            "appointment_ids": [apt.appointment_id for apt in self.appointments],
            "legs": [asdict(leg) for leg in self.legs],
            "cluster": self.cluster,
            "slots": [asdict(slot) for slot in self.slots],
            "recommended": [asdict(slot) for slot in self.recommended],
        }


def estimate_travel_minutes(distance_km: float) -> int:
    """Urban driving estimate plus a fixed parking buffer, rounded up."""
    return math.ceil(distance_km / URBAN_SPEED_KMH * 60 + PARKING_BUFFER_MIN)


def _travel(a: Optional[LatLng], b: Optional[LatLng]) -> int:
    if a is None or b is None:
        return estimate_travel_minutes(0.0)
    return estimate_travel_minutes(haversine_km(a.lat, a.lng, b.lat, b.lng))


def _edge_efficiency(travel_min: int) -> int:
    return max(0, 100 - travel_min * TRAVEL_PENALTY_PER_MIN)


def generate_slots(
    appointments: list[Appointment],
    customer_location: Optional[LatLng],
    service_duration: int = 120,
    day_start: str | None = None,
    day_end: str | None = None,
    step_minutes: int | None = None,
) -> list[TimeSlot]:
    """Free slots for a new visit, best route efficiency first.

    Without existing appointments every step of the working day is offered.
    Otherwise slots are fitted before the first stop, between consecutive stops
    and after the last one, leaving room to drive to and from the customer.
    """
    start = parse_time(day_start or settings.workday_start)
    end = parse_time(day_end or settings.workday_end)
    step = step_minutes or settings.slot_step_minutes
    day = sorted(appointments, key=lambda apt: apt.start_time)
    slots: list[TimeSlot] = []

    if not day:
        current = start
        while current + service_duration <= end:
            slots.append(TimeSlot(time=format_time(current)))
            current += step
        return slots

    first = day[0]
    travel = _travel(customer_location, first.location)
    first_start = parse_time(first.start_time)
    current = start
    while current + service_duration < first_start:
        if first_start - (current + service_duration) >= travel:
            slots.append(
                TimeSlot(time=format_time(current), travel_to_next=travel, efficiency=_edge_efficiency(travel))
            )
        current += step

    for previous, following in zip(day, day[1:]):
        travel_from = _travel(previous.location, customer_location)
        travel_to = _travel(customer_location, following.location)
        following_start = parse_time(following.start_time)
        current = parse_time(previous.end_time) + travel_from
        latest = following_start - service_duration - travel_to
        efficiency = max(MIN_BETWEEN_EFFICIENCY, 100 - (travel_from + travel_to) * TRAVEL_PENALTY_PER_MIN)
        while current < latest:
            if current + service_duration + travel_to < following_start:
                slots.append(
                    TimeSlot(
                        time=format_time(current),
                        travel_from_previous=travel_from,
                        travel_to_next=travel_to,
                        efficiency=efficiency,
                    )
                )
            current += step

    last = day[-1]
    travel = _travel(last.location, customer_location)
    current = parse_time(last.end_time) + travel
    while current + service_duration < end:
        slots.append(
            TimeSlot(time=format_time(current), travel_from_previous=travel, efficiency=_edge_efficiency(travel))
        )
        current += step

    slots.sort(key=lambda slot: slot.efficiency, reverse=True)
    return slots


def recommended_slots(slots: list[TimeSlot], limit: int = MAX_RECOMMENDATIONS) -> list[TimeSlot]:
    picks = [slot for slot in slots if slot.efficiency >= HIGH_EFFICIENCY]
    if len(picks) < limit:
        picks.extend(slot for slot in slots if MODERATE_EFFICIENCY <= slot.efficiency < HIGH_EFFICIENCY)
    return picks[:limit]


def arrival_window(appointment_time: str, travel_from_previous: int | None = None) -> tuple[str, str]:
    """Earliest and latest arrival around a slot, widened by travel uncertainty."""
    variance = math.ceil(travel_from_previous * 0.2) if travel_from_previous else 15
    minutes = parse_time(appointment_time)
    return format_time(max(0, minutes - variance)), format_time(minutes + variance)


class SlotContextBuilder:
    def __init__(self, repository: "SupabaseRepository | None", route_cache: "RouteCache | None") -> None:
        self.repository = repository
        self.route_cache = route_cache

    def _leg(self, previous: Appointment, following: Appointment) -> Optional[TravelLeg]:
        if previous.location is None or following.location is None:
            return None
        if self.route_cache is not None:
            cached = self.route_cache.get_route(previous.location, following.location, TravelMode.DRIVING)
            if cached is not None and cached.legs:
                return TravelLeg(
                    from_appointment=previous.appointment_id,
                    to_appointment=following.appointment_id,
                    distance_m=cached.total_distance_m,
                    duration_min=math.ceil(cached.total_duration_s / 60),
                    source="cache",
                )
        distance_km = haversine_km(
            previous.location.lat, previous.location.lng, following.location.lat, following.location.lng
        )
        return TravelLeg(
            from_appointment=previous.appointment_id,
            to_appointment=following.appointment_id,
            distance_m=round(distance_km * 1000),
            duration_min=estimate_travel_minutes(distance_km),
            source="estimate",
        )

    def _cluster(self, appointments: list[Appointment]) -> Optional[dict]:
        if self.route_cache is None:
            return None
        for cluster_id in dict.fromkeys(apt.cluster_id for apt in appointments if apt.cluster_id):
            cluster = self.route_cache.get_route_cluster(cluster_id)
            if cluster is not None:
                return cluster
        return None

    def build(
        self,
        day: date,
        customer_location: Optional[LatLng] = None,
        service_duration: int = 120,
    ) -> SlotContext:
        appointments = self.repository.appointments_for_date(day) if self.repository is not None else []
        legs = [leg for leg in (self._leg(a, b) for a, b in zip(appointments, appointments[1:])) if leg]
        slots = generate_slots(appointments, customer_location, service_duration)
        logger.debug(f"Slot context for {day}: {len(appointments)} appointments, {len(slots)} free slots")
        return SlotContext(
            day=day,
            appointments=appointments,
            legs=legs,
            cluster=self._cluster(appointments),
            slots=slots,
            recommended=recommended_slots(slots),
        )
