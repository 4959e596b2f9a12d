"""Tests for weather, season and time-of-day updates."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from meadowloop.environment.weather import (
    describe_environment,
    season_for,
    set_weather,
    temperature_for,
    time_of_day_for,
    update_environment,
    weather_options,
)
from meadowloop.schemas import EnvironmentState

NOON = datetime(2025, 7, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "hour, expected", [(5, "morning"), (11, "morning"), (12, "day"), (18, "evening"), (22, "night"), (3, "night")]
)
def test_time_of_day(hour, expected):
    assert time_of_day_for(hour) == expected


@pytest.mark.parametrize("month, expected", [(3, "spring"), (7, "summer"), (11, "fall"), (12, "winter"), (1, "winter")])
def test_season(month, expected):
    assert season_for(month) == expected


def test_first_update_only_stamps_time():
    updated = update_environment(EnvironmentState(), now=NOON, rng=random.Random(1))

    assert updated.season == "summer"
    assert updated.time_of_day == "day"
    assert updated.weather == "clear"
    assert updated.last_weather_update == NOON


def test_weather_rolls_at_most_every_five_minutes():
    rng = random.Random(3)
    environment = update_environment(EnvironmentState(), now=NOON, rng=rng)

    unchanged = update_environment(environment, now=NOON + timedelta(minutes=5), rng=rng)
    assert unchanged.weather == "clear"
    assert unchanged.weather_history == []

    later = environment
    for step in range(1, 30):
        later = update_environment(later, now=NOON + timedelta(minutes=6 * step), rng=rng)
    assert later.weather in weather_options("summer")
    assert len(later.weather_history) <= 10
    assert all(record.weather != "" for record in later.weather_history)


def test_update_returns_a_copy():
    environment = EnvironmentState()

    update_environment(environment, now=NOON, rng=random.Random(0))

    assert environment.last_weather_update is None


def test_temperature_is_clamped():
    rng = random.Random(0)

    assert temperature_for("freezing", "winter", rng) >= -20
    assert temperature_for("hot", "summer", rng) <= 40
    assert 30 <= temperature_for("hot", "summer", rng) <= 38


def test_manual_weather_override():
    environment = set_weather(EnvironmentState(), "snow", now=NOON, rng=random.Random(0), temperature=-4)

    assert environment.weather == "snow"
    assert environment.temperature == -4
    assert describe_environment(environment) == "spring day, snow weather, cold at -4°C"
