"""Shared fixtures: a controllable clock and small world builders."""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

import pytest

from meadowloop.config import SimulationSettings
from meadowloop.schemas import Character, Position, Tile, WorldState, Zone
from meadowloop.store import WorldStore

START = datetime(2025, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


def block_zone(
    zone_id: str,
    name: str,
    xs: Iterable[int],
    ys: Iterable[int],
    *,
    zone_type: str = "public",
    walkable: Optional[bool] = None,
) -> Zone:
    ys = list(ys)
    return Zone(
        id=zone_id,
        name=name,
        type=zone_type,
        walkable=walkable,
        tiles=[Tile(x=x, y=y) for x in xs for y in ys],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> SimulationSettings:
    return SimulationSettings(grid_width=20, grid_height=20)


@pytest.fixture
def make_character():
    def _make(
        character_id: str,
        x: int = 0,
        y: int = 0,
        *,
        name: Optional[str] = None,
        **fields,
    ) -> Character:
        return Character(
            id=character_id,
            name=name or character_id.capitalize(),
            position=Position(x=x, y=y),
            **fields,
        )

    return _make


@pytest.fixture
def make_store(clock, settings):
    def _make(
        characters: List[Character] = (),
        zones: List[Zone] = (),
        *,
        seed: int = 1,
        store_settings: Optional[SimulationSettings] = None,
    ) -> WorldStore:
        state = WorldState(characters=list(characters), zones=list(zones))
        return WorldStore(
            state,
            settings=store_settings or settings,
            clock=clock,
            rng=random.Random(seed),
        )

    return _make
