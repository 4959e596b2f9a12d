"""Weather, season and time-of-day recomputation for the town environment.

Functions take the current ``EnvironmentState`` and return an updated copy.
Randomness comes from the caller's ``random.Random`` so tests can seed it.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import List, Optional

from meadowloop.logging_utils import log_info
from meadowloop.schemas import EnvironmentState, WeatherRecord

WEATHER_UPDATE_INTERVAL = timedelta(minutes=5)
WEATHER_HISTORY_LIMIT = 10

BASE_WEATHER = ["clear", "sunny", "cloudy", "overcast"]
SEASONAL_WEATHER = {
    "spring": ["rainy", "drizzle", "windy"],
    "summer": ["hot", "humid", "thunderstorm"],
    "fall": ["rainy", "windy", "foggy", "cool"],
    "winter": ["cold", "snow", "storm", "freezing"],
}
SEASON_BASE_TEMPERATURE = {"spring": 15, "summer": 25, "fall": 12, "winter": 3}
WEATHER_TEMPERATURE_MODIFIERS = {
    "sunny": 5,
    "hot": 10,
    "humid": 3,
    "clear": 2,
    "cloudy": -2,
    "overcast": -3,
    "rainy": -5,
    "drizzle": -3,
    "storm": -8,
    "thunderstorm": -6,
    "snow": -10,
    "cold": -8,
    "freezing": -15,
    "windy": -2,
    "foggy": -4,
    "cool": -5,
}
MIN_TEMPERATURE = -20
MAX_TEMPERATURE = 40


def time_of_day_for(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 18:
        return "day"
    if 18 <= hour < 22:
        return "evening"
    return "night"


def season_for(month: int) -> str:
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def weather_options(season: str) -> List[str]:
    return BASE_WEATHER + SEASONAL_WEATHER.get(season, [])


def temperature_for(weather: str, season: str, rng: random.Random) -> int:
    base = SEASON_BASE_TEMPERATURE.get(season, 15)
    modifier = WEATHER_TEMPERATURE_MODIFIERS.get(weather, 0)
    value = base + modifier + rng.uniform(-3.0, 3.0)
    return round(max(MIN_TEMPERATURE, min(MAX_TEMPERATURE, value)))


def update_environment(
    environment: EnvironmentState,
    *,
    now: datetime,
    rng: random.Random,
) -> EnvironmentState:
    """Recompute season/time of day and, at most every 5 minutes, roll new weather."""

    updated = environment.model_copy(deep=True)
    updated.time_of_day = time_of_day_for(now.hour)
    updated.season = season_for(now.month)

    if updated.last_weather_update is None:
        updated.last_weather_update = now
        return updated

    if now - updated.last_weather_update <= WEATHER_UPDATE_INTERVAL:
        return updated

    new_weather = rng.choice(weather_options(updated.season))
    if new_weather != updated.weather:
        updated.weather_history.append(
            WeatherRecord(
                weather=updated.weather,
                temperature=updated.temperature,
                timestamp=updated.last_weather_update,
            )
        )
        updated.weather_history = updated.weather_history[-WEATHER_HISTORY_LIMIT:]
        previous = updated.weather
        updated.weather = new_weather
        updated.temperature = temperature_for(new_weather, updated.season, rng)
        updated.last_weather_update = now
        log_info(f"Weather changed: {previous} -> {new_weather} ({updated.temperature}°C)")
    return updated


def set_weather(
    environment: EnvironmentState,
    weather: str,
    *,
    now: datetime,
    rng: random.Random,
    temperature: Optional[int] = None,
) -> EnvironmentState:
    """Manual weather override; temperature derives from season when omitted."""

    updated = environment.model_copy(deep=True)
    updated.weather = weather
    updated.temperature = (
        temperature if temperature is not None else temperature_for(weather, updated.season, rng)
    )
    updated.last_weather_update = now
    log_info(f"Weather manually set: {weather} ({updated.temperature}°C)")
    return updated


def describe_environment(environment: EnvironmentState) -> str:
    temperature = environment.temperature
    if temperature > 25:
        feel = "warm"
    elif temperature > 15:
        feel = "mild"
    elif temperature > 5:
        feel = "cool"
    else:
        feel = "cold"
    return (
        f"{environment.season} {environment.time_of_day}, {environment.weather} weather, "
        f"{feel} at {temperature}°C"
    )


__all__ = [
    "describe_environment",
    "season_for",
    "set_weather",
    "temperature_for",
    "time_of_day_for",
    "update_environment",
    "weather_options",
]
