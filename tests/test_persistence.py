"""Tests for delta-based world persistence."""

import json

import pytest

from meadowloop.persistence import (
    InMemoryPersistence,
    JsonPersistence,
    WorldDeltaError,
    apply_world_delta,
    compute_world_delta,
)
from meadowloop.schemas import Character, Position, WorldState
from conftest import block_zone


def make_base() -> WorldState:
    return WorldState(
        characters=[
            Character(id="alice", name="Alice", position=Position(x=1, y=1)),
            Character(id="bob", name="Bob", position=Position(x=4, y=4)),
        ],
        zones=[
            block_zone("plaza", "Plaza", range(0, 3), range(0, 3)),
            block_zone("shed", "Shed", [8], [8], zone_type="building"),
        ],
    )


def make_changed(base: WorldState) -> WorldState:
    state = base.model_copy(deep=True)
    state.tick = 12
    state.characters[0].position = Position(x=2, y=1, zone="plaza")
    state.characters[0].current_emotion = "happy"
    state.characters = [state.characters[0], Character(id="cara", name="Cara", position=Position(x=5, y=5))]
    state.zones[0].description = "Freshly swept"
    state.zones = [state.zones[0], block_zone("pond", "Pond", [9], [9], zone_type="water")]
    return state


def test_delta_records_only_changes():
    base = make_base()

    delta = compute_world_delta(base, make_changed(base))

    assert delta["version"] == 1
    assert delta["tick"] == 12
    assert set(delta["characters"]["modified"]["alice"]) == {"position", "current_emotion"}
    assert [c["id"] for c in delta["characters"]["added"]] == ["cara"]
    assert delta["characters"]["deleted"] == ["bob"]
    assert [z["id"] for z in delta["zones"]["added"]] == ["pond"]
    assert [z["id"] for z in delta["zones"]["modified"]] == ["plaza"]
    assert delta["zones"]["deleted"] == ["shed"]


def test_unchanged_world_has_empty_delta():
    base = make_base()

    delta = compute_world_delta(base, base.model_copy(deep=True))

    assert delta["characters"] == {"modified": {}, "added": [], "deleted": []}
    assert delta["zones"] == {"added": [], "modified": [], "deleted": []}


def test_apply_delta_rebuilds_current_state():
    base = make_base()
    changed = make_changed(base)

    restored = apply_world_delta(base, json.loads(json.dumps(compute_world_delta(base, changed))))

    assert restored.tick == 12
    assert sorted(c.id for c in restored.characters) == ["alice", "cara"]
    alice = next(c for c in restored.characters if c.id == "alice")
    assert alice.position.coords == (2, 1)
    assert alice.current_emotion == "happy"
    assert sorted(z.id for z in restored.zones) == ["plaza", "pond"]
    plaza = next(z for z in restored.zones if z.id == "plaza")
    assert plaza.description == "Freshly swept"


@pytest.mark.parametrize(
    "delta",
    [
        "not a dict",
        {"version": 99},
        {"characters": {"modified": {"alice": "oops"}}},
        {"zones": {"added": [{"name": "no id"}]}},
        {"characters": {"added": [{"id": "x"}]}},
    ],
)
def test_malformed_delta_is_rejected(delta):
    with pytest.raises(WorldDeltaError):
        apply_world_delta(make_base(), delta)


@pytest.mark.asyncio
async def test_load_without_saved_delta_returns_base_copy():
    base = make_base()
    persistence = InMemoryPersistence()

    first = await persistence.load_world(base)
    second = await persistence.load_world(base)

    assert first == base
    assert second == first
    assert first is not base


@pytest.mark.asyncio
async def test_in_memory_round_trip():
    base = make_base()
    persistence = InMemoryPersistence()

    await persistence.save_world(base, make_changed(base))
    restored = await persistence.load_world(base)

    assert persistence.saves == 1
    assert restored.tick == 12
    await persistence.clear()
    assert await persistence.load_world(base) == base


@pytest.mark.asyncio
async def test_json_persistence_round_trip(tmp_path):
    base = make_base()
    persistence = JsonPersistence(tmp_path / "state")
    await persistence.initialize()

    await persistence.save_world(base, make_changed(base))

    assert persistence.delta_path.exists()
    assert not persistence.delta_path.with_suffix(".tmp").exists()
    restored = await JsonPersistence(tmp_path / "state").load_world(base)
    assert restored.tick == 12


@pytest.mark.asyncio
async def test_corrupt_file_falls_back_to_base(tmp_path):
    base = make_base()
    persistence = JsonPersistence(tmp_path)
    await persistence.initialize()
    persistence.delta_path.write_text("{ not json", encoding="utf-8")

    with pytest.raises(WorldDeltaError):
        await persistence.read_delta()
    assert await persistence.load_world(base) == base


@pytest.mark.asyncio
async def test_clear_removes_saved_file(tmp_path):
    base = make_base()
    persistence = JsonPersistence(tmp_path)
    await persistence.save_world(base, make_changed(base))

    await persistence.clear()

    assert not persistence.delta_path.exists()
    assert await persistence.read_delta() is None
