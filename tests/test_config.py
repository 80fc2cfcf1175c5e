import pytest
from pydantic import ValidationError

from routekit.config import Settings


def test_tuple_settings_accept_env_style_strings():
    config = Settings(warming_peak_hours="7, 19", quick_check_postal_range="[1000, 1999]")

    assert config.warming_peak_hours == (7, 19)
    assert config.quick_check_postal_range == (1000, 1999)


def test_peak_hours_must_be_clock_hours():
    with pytest.raises(ValidationError):
        Settings(warming_peak_hours="8,24")


def test_env_prefix(monkeypatch):
    monkeypatch.setenv("ROUTEKIT_MAX_WAYPOINTS", "10")

    assert Settings().max_waypoints == 10
