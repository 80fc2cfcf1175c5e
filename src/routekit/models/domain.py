"""Domain models for addresses, routes, service areas and appointments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Optional, Sequence

from ..errors import InvalidInputError


class TravelMode(str, Enum):
    DRIVING = "DRIVING"
    WALKING = "WALKING"
    BICYCLING = "BICYCLING"
    TRANSIT = "TRANSIT"
    TWO_WHEELER = "TWO_WHEELER"


@dataclass(slots=True)
class LatLng:
    """A WGS84 coordinate."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise InvalidInputError(f"Latitude {self.lat} is outside -90..90.")
        if not -180.0 <= self.lng <= 180.0:
            raise InvalidInputError(f"Longitude {self.lng} is outside -180..180.")

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict) -> "LatLng":
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))

    def as_tuple(self) -> tuple[float, float]:
        return (self.lat, self.lng)


@dataclass(slots=True)
class Address:
    """Represents a Dutch street address as entered by a customer."""

    street: str
    house_number: str
    postal_code: str
    city: str
    house_number_ext: Optional[str] = None
    country: str = "Netherlands"

    def one_line(self) -> str:
        number = f"{self.house_number}{self.house_number_ext or ''}"
        parts = [
            f"{self.street} {number}".strip(),
            " ".join(self.postal_code.split()).upper(),
            self.city,
            self.country,
        ]
        return ", ".join(part for part in parts if part)

    def to_dict(self) -> dict:
        return {
            "street": self.street,
            "house_number": self.house_number,
            "postal_code": self.postal_code,
            "city": self.city,
            "house_number_ext": self.house_number_ext,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Address":
        return cls(
            street=str(data.get("street") or ""),
            house_number=str(data.get("house_number") or ""),
            postal_code=str(data.get("postal_code") or ""),
            city=str(data.get("city") or ""),
            house_number_ext=data.get("house_number_ext"),
            country=str(data.get("country") or "Netherlands"),
        )

    @classmethod
    def from_line(cls, street_line: str, postal_code: str, city: str) -> "Address":
        """Split a stored ``"Street 12"`` line into street and house number."""
        tokens = (street_line or "").split()
        if len(tokens) > 1:
            return cls(street=" ".join(tokens[:-1]), house_number=tokens[-1], postal_code=postal_code, city=city)
        return cls(street=street_line or "", house_number="", postal_code=postal_code, city=city)


@dataclass(slots=True)
class GeocodeResult:
    location: LatLng
    place_id: str
    formatted_address: str
    accuracy: str = "APPROXIMATE"

    def to_dict(self) -> dict:
        return {
            "location": self.location.to_dict(),
            "place_id": self.place_id,
            "formatted_address": self.formatted_address,
            "accuracy": self.accuracy,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GeocodeResult":
        return cls(
            location=LatLng.from_dict(data["location"]),
            place_id=str(data["place_id"]),
            formatted_address=str(data.get("formatted_address") or ""),
            accuracy=str(data.get("accuracy") or "APPROXIMATE"),
        )


@dataclass(slots=True)
class RouteLeg:
    origin: LatLng
    destination: LatLng
    distance_m: int
    duration_s: int
    traffic_duration_s: Optional[int] = None

    @property
    def duration_min(self) -> int:
        return round(self.duration_s / 60)

    @property
    def traffic_duration_min(self) -> Optional[int]:
        if self.traffic_duration_s is None:
            return None
        return round(self.traffic_duration_s / 60)

    def to_dict(self) -> dict:
        return {
            "origin": self.origin.to_dict(),
            "destination": self.destination.to_dict(),
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "traffic_duration_s": self.traffic_duration_s,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RouteLeg":
        traffic = data.get("traffic_duration_s")
        return cls(
            origin=LatLng.from_dict(data["origin"]),
            destination=LatLng.from_dict(data["destination"]),
            distance_m=int(data["distance_m"]),
            duration_s=int(data["duration_s"]),
            traffic_duration_s=int(traffic) if traffic is not None else None,
        )


@dataclass(slots=True)
class RouteResult:
    """Provider route between an origin and destination, optionally via waypoints."""

    legs: list[RouteLeg]
    polyline: Optional[str] = None
    optimized_order: Optional[list[int]] = None

    @property
    def total_distance_m(self) -> int:
        return sum(leg.distance_m for leg in self.legs)

    @property
    def total_duration_s(self) -> int:
        return sum(leg.duration_s for leg in self.legs)

    def to_dict(self) -> dict:
        return {
            "legs": [leg.to_dict() for leg in self.legs],
            "polyline": self.polyline,
            "optimized_order": self.optimized_order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RouteResult":
        order = data.get("optimized_order")
        return cls(
            legs=[RouteLeg.from_dict(leg) for leg in data.get("legs", [])],
            polyline=data.get("polyline"),
            optimized_order=[int(i) for i in order] if order is not None else None,
        )


@dataclass(slots=True)
class DistanceMatrix:
    """Origin x destination distances (meters) and durations (seconds); None means unreachable."""

    origins: list[LatLng]
    destinations: list[LatLng]
    distances_m: list[list[Optional[int]]]
    durations_s: list[list[Optional[int]]]

    def to_dict(self) -> dict:
        return {
            "origins": [point.to_dict() for point in self.origins],
            "destinations": [point.to_dict() for point in self.destinations],
            "distances_m": self.distances_m,
            "durations_s": self.durations_s,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DistanceMatrix":
        return cls(
            origins=[LatLng.from_dict(point) for point in data.get("origins", [])],
            destinations=[LatLng.from_dict(point) for point in data.get("destinations", [])],
            distances_m=data.get("distances_m", []),
            durations_s=data.get("durations_s", []),
        )


@dataclass(slots=True)
class OptimizedRoute:
    ordered_waypoints: list[LatLng]
    legs: list[RouteLeg]
    total_distance_m: int
    total_duration_min: int
    efficiency: int
    polyline: Optional[str] = None
    fallback: bool = False

    def to_dict(self) -> dict:
        return {
            "ordered_waypoints": [point.to_dict() for point in self.ordered_waypoints],
            "legs": [leg.to_dict() for leg in self.legs],
            "total_distance_m": self.total_distance_m,
            "total_duration_min": self.total_duration_min,
            "efficiency": self.efficiency,
            "polyline": self.polyline,
            "fallback": self.fallback,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "OptimizedRoute":
        return cls(
            ordered_waypoints=[LatLng.from_dict(point) for point in data.get("ordered_waypoints", [])],
            legs=[RouteLeg.from_dict(leg) for leg in data.get("legs", [])],
            total_distance_m=int(data["total_distance_m"]),
            total_duration_min=int(data["total_duration_min"]),
            efficiency=int(data["efficiency"]),
            polyline=data.get("polyline"),
            fallback=bool(data.get("fallback", False)),
        )


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Outcome of a service-area check. Never mutated; merges build new instances."""

    is_valid: bool
    confidence: int
    method: str
    message: str = ""
    service_area_id: Optional[str] = None
    service_area_name: Optional[str] = None
    province: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "confidence": self.confidence,
            "method": self.method,
            "message": self.message,
            "service_area_id": self.service_area_id,
            "service_area_name": self.service_area_name,
            "province": self.province,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ValidationResult":
        return cls(
            is_valid=bool(data["is_valid"]),
            confidence=int(data["confidence"]),
            method=str(data["method"]),
            message=str(data.get("message") or ""),
            service_area_id=data.get("service_area_id"),
            service_area_name=data.get("service_area_name"),
            province=data.get("province"),
        )


@dataclass(slots=True)
class PostalCodeRange:
    start_code: int
    end_code: int
    excluded_codes: tuple[str, ...] = ()

    def contains(self, numeric_code: int, postal_code: str) -> bool:
        if not self.start_code <= numeric_code <= self.end_code:
            return False
        normalized = "".join(postal_code.split()).upper()
        excluded = {"".join(code.split()).upper() for code in self.excluded_codes}
        return normalized not in excluded and normalized[:4] not in excluded


@dataclass(slots=True)
class ServiceArea:
    """Configured service territory with its postal ranges and optional polygon."""

    area_id: str
    name: str
    province: str
    postal_ranges: list[PostalCodeRange] = field(default_factory=list)
    polygon: Optional[Sequence[tuple[float, float]]] = None
    centroid: Optional[LatLng] = None
    calendar_color_id: Optional[str] = None
    sales_person_name: Optional[str] = None


@dataclass(slots=True)
class Appointment:
    appointment_id: str
    day: date
    start_time: str
    duration_min: int
    location: Optional[LatLng] = None
    address: Optional[Address] = None
    status: str = "gepland"
    service_area_id: Optional[str] = None
    cluster_id: Optional[str] = None

    @property
    def end_time(self) -> str:
        start = datetime.combine(self.day, datetime.strptime(self.start_time, "%H:%M").time())
        return (start + timedelta(minutes=self.duration_min)).strftime("%H:%M")


@dataclass(slots=True)
class RouteCluster:
    cluster_id: str
    day: date
    appointments: list[Appointment]

    def waypoints(self) -> list[LatLng]:
        return [apt.location for apt in self.appointments if apt.location is not None]


@dataclass(slots=True)
class PostalArea:
    """Popular postal-code prefix with the mean location of recent bookings."""

    prefix: str
    count: int
    centroid: Optional[LatLng] = None


@dataclass(slots=True)
class FrequencyRecord:
    subject: dict[str, Any]
    count: int
    last_used: str

    def to_dict(self) -> dict:
        return {"subject": self.subject, "count": self.count, "last_used": self.last_used}

    @classmethod
    def from_dict(cls, data: dict) -> "FrequencyRecord":
        return cls(subject=dict(data["subject"]), count=int(data["count"]), last_used=str(data["last_used"]))


Location = LatLng | Address | str


def location_to_dict(location: Location) -> dict:
    """Tagged dict form of any location accepted by the caches."""
    if isinstance(location, LatLng):
        return {"kind": "latlng", **location.to_dict()}
    if isinstance(location, Address):
        return {"kind": "address", **location.to_dict()}
    return {"kind": "text", "text": str(location)}


def location_from_dict(data: dict) -> Location:
    kind = data.get("kind")
    if kind == "latlng":
        return LatLng.from_dict(data)
    if kind == "address":
        return Address.from_dict(data)
    return str(data.get("text", ""))
