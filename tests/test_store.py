"""Tests for world store mutations."""

import pytest

from meadowloop.config import SimulationSettings
from meadowloop.schemas import EventType
from conftest import block_zone


def test_death_and_resurrection_spread_news(make_store, make_character):
    store = make_store([make_character("alice", 1, 1), make_character("bob", 2, 2)])

    assert store.set_dead("alice", "Fell from a ladder")
    assert not store.set_dead("alice", "Again")

    alice, bob = store.characters["alice"], store.characters["bob"]
    assert alice.is_dead and alice.current_emotion == "dead"
    assert alice.memories[-1].emotional_weight == 100
    assert bob.memories[-1].content == "Alice died: Fell from a ladder"
    assert store.living_characters() == [bob]

    assert store.resurrect("alice", "Village healer")
    assert not alice.is_dead
    assert alice.cause_of_death is None
    assert alice.current_emotion == "confused"
    assert "Previous death: Fell from a ladder" in alice.memories[-1].content
    assert [e.type for e in store.events] == [EventType.DEATH.value, EventType.RESURRECTION.value]


def test_affinity_is_clamped_and_created_on_demand(make_store, make_character):
    store = make_store([make_character("alice"), make_character("bob", 1, 0)])

    relationship = store.adjust_affinity("alice", "bob", 150)

    assert relationship.target_name == "Bob"
    assert relationship.affinity == 100
    assert store.adjust_affinity("alice", "alice", 5) is None
    assert store.adjust_affinity("alice", "ghost", 5) is None


def test_duplicate_character_starts_fresh(make_store, make_character):
    store = make_store([make_character("alice", 3, 3)])
    store.add_memory("alice", "Something happened")

    copy = store.duplicate_character("alice")

    assert copy.id != "alice"
    assert copy.name == "Alice (Copy)"
    assert copy.position.coords == (5, 4)
    assert copy.memories == []


def test_create_character_generates_id_and_walkable_position(make_store):
    wall = block_zone("wall", "Wall", range(0, 20), range(0, 10), zone_type="wall")
    store = make_store([], [wall])

    character = store.create_character({"name": "Dana", "position": {"x": 4, "y": 4}})

    assert character.id.startswith("char")
    assert store.grid.is_walkable(*character.position.coords)
    with pytest.raises(ValueError):
        store.create_character(character)


def test_zone_edits_refresh_walkability_and_positions(make_store, make_character):
    store = make_store([make_character("alice", 2, 2)])

    store.add_zone({"id": "shed", "name": "Shed", "type": "building", "tiles": [{"x": 2, "y": 2}]})
    assert not store.grid.is_walkable(2, 2)
    # Alice is inside the new building until the tick corrects her.
    assert store.characters["alice"].position.zone == "shed"
    assert store.ensure_walkable_positions() == ["alice"]

    store.update_zone("shed", type="garden")
    assert store.grid.is_walkable(2, 2)
    assert store.add_tiles("shed", [(2, 2), (3, 2), (40, 40)]) == 1
    assert store.zone_bounds("shed") == {"min_x": 2, "max_x": 3, "min_y": 2, "max_y": 2}
    assert store.remove_tiles("shed", [(3, 2)]) == 1
    assert store.delete_zone("shed")
    assert not store.delete_zone("shed")
    with pytest.raises(ValueError):
        store.add_zone(block_zone("a", "A", [0], [0]))
        store.add_zone(block_zone("a", "A", [1], [1]))


def test_event_log_is_bounded(make_store, make_character):
    store = make_store(
        [make_character("alice")], store_settings=SimulationSettings(grid_width=5, grid_height=5, event_retention=10)
    )

    for i in range(15):
        store.record_event(EventType.SYSTEM, f"event {i}")

    assert len(store.events) == 10
    assert store.events[0].summary == "event 5"


def test_injection_requires_known_target(make_store, make_character):
    store = make_store([make_character("alice")])

    with pytest.raises(ValueError):
        store.add_injection("bob", "Hello")

    injection = store.add_injection("alice", "Hello")
    assert store.pending_injections() == [injection]
    assert store.mark_injection_consumed(injection.id, "alice")
    assert store.clear_processed_injections() == 1
    assert store.injections == []
