"""Routing request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import LatLng, OptimizedRoute, TravelMode


class LatLngModel(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> LatLng:
        return LatLng(self.lat, self.lng)


class OptimizeRouteRequest(BaseModel):
    origin: LatLngModel
    waypoints: List[LatLngModel] = Field(default_factory=list)
    destination: Optional[LatLngModel] = Field(
        default=None,
        description="End of the day. Defaults to the origin, i.e. a round trip back to base.",
    )
    mode: TravelMode = TravelMode.DRIVING
    departure_time: Optional[datetime] = None


class RouteLegModel(BaseModel):
    origin: LatLngModel
    destination: LatLngModel
    distance_m: int
    duration_s: int
    traffic_duration_s: Optional[int] = None


class OptimizedRouteResponse(BaseModel):
    ordered_waypoints: List[LatLngModel]
    legs: List[RouteLegModel]
    total_distance_m: int
    total_duration_min: int
    efficiency: int
    polyline: Optional[str] = None
    fallback: bool = False

    @classmethod
    def from_domain(cls, route: OptimizedRoute) -> "OptimizedRouteResponse":
        return cls.model_validate(route.to_dict())
