#!/usr/bin/env python3
"""Helper script to check the .env file and which backends routekit will use."""

from pathlib import Path
import sys

TEMPLATE = """# Supabase (appointments, service areas, leads). Optional: without it warming has no input.
ROUTEKIT_SUPABASE_URL=https://your-project-id.supabase.co
ROUTEKIT_SUPABASE_KEY=your-service-role-key-here

# Google Maps Platform. Optional: without it routing uses straight-line estimates.
ROUTEKIT_GOOGLE_MAPS_API_KEY=

# Shared cache tier. Optional: without it caching is in-process only.
# ROUTEKIT_REDIS_URL=redis://localhost:6379/0

# Warming schedule
# ROUTEKIT_WARMING_INTERVAL_HOURS=4
# ROUTEKIT_WARMING_PEAK_HOURS=8,18
"""


def _mask(value: str) -> str:
    return value[:12] + "..." + value[-4:] if len(value) > 20 else value


def main() -> int:
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("routekit environment check")
    print("=" * 60)
    print()

    if not env_file.exists():
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"Created template .env at: {env_file}")
        print("Edit it and run this script again.")
        return 1
    print(f"Found .env file at: {env_file}")
    print()

    sys.path.insert(0, str(project_root / "src"))
    try:
        from routekit.config import settings
    except Exception as e:
        print(f"Error loading config: {e}")
        return 1

    checks = [
        ("Supabase", bool(settings.supabase_url and settings.supabase_key), settings.supabase_url or ""),
        ("Google Maps", bool(settings.google_maps_api_key), _mask(settings.google_maps_api_key or "")),
        ("Redis", bool(settings.redis_url), settings.redis_url or ""),
    ]
    for name, configured, detail in checks:
        status = "configured" if configured else "NOT configured"
        print(f"{name:<12} {status:<15} {detail}")

    print()
    print(f"Warming every {settings.warming_interval_hours}h, peak hours {list(settings.warming_peak_hours)}")
    print()
    if not all(configured for _, configured, _ in checks):
        print("Variables must use the ROUTEKIT_ prefix with no spaces around '='.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
