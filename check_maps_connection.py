#!/usr/bin/env python3
"""Smoke test for the Google Maps connection: geocode, directions and distance matrix."""

import sys
from pathlib import Path

project_root = Path(__file__).parent
sys.path.insert(0, str(project_root / "src"))

from routekit.config import settings
from routekit.errors import ProviderError
from routekit.models.domain import LatLng
from routekit.services.maps.client import MapsClient

AMSTERDAM_CENTRAAL = LatLng(52.3791, 4.9003)
DAM_SQUARE = LatLng(52.3731, 4.8926)


def main() -> int:
    print("=" * 60)
    print("Google Maps Connection Test")
    print("=" * 60)
    print()

    print("1. Checking configuration...")
    if not settings.google_maps_api_key:
        print("   [ERROR] ROUTEKIT_GOOGLE_MAPS_API_KEY is not configured")
        return 1
    print(f"   [OK] Base URL: {settings.google_maps_base_url}")
    print()

    client = MapsClient()

    print("2. Geocoding a known address...")
    if not client.check_health():
        print("   [ERROR] Geocoding request did not return a result")
        return 1
    print("   [OK] Geocoding works")
    print()

    print("3. Requesting directions...")
    try:
        route = client.compute_route(AMSTERDAM_CENTRAAL, DAM_SQUARE)
        print(f"   [OK] {route.total_distance_m} m, {route.total_duration_s} s over {len(route.legs)} leg(s)")
    except ProviderError as e:
        print(f"   [ERROR] Directions failed ({e.code}): {e}")
        return 1
    print()

    print("4. Requesting a distance matrix...")
    try:
        matrix = client.distance_matrix([AMSTERDAM_CENTRAAL], [DAM_SQUARE, AMSTERDAM_CENTRAAL])
        print(f"   [OK] Received {len(matrix.durations_s)}x{len(matrix.durations_s[0])} duration matrix")
    except ProviderError as e:
        print(f"   [ERROR] Distance matrix failed ({e.code}): {e}")
        return 1
    print()

    print("=" * 60)
    print("[SUCCESS] Google Maps is connected and working!")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
