"""Tests for memory bounding, deduplication, wipes, summaries and consolidation."""

import asyncio
from datetime import timedelta
from typing import List, Sequence

import pytest

from meadowloop.config import MemorySettings
from meadowloop.decision import DigestError, MemoryDigestClient
from meadowloop.memory import (
    MemoryManager,
    bound_memories,
    deduplicate_memories,
    emotional_weight_for,
)
from meadowloop.schemas import ConsolidationResult, Memory
from conftest import START


def _memories(*specs) -> List[Memory]:
    """specs: (content, weight) pairs, one second apart."""

    return [
        Memory(content=content, emotional_weight=weight, timestamp=START + timedelta(seconds=i))
        for i, (content, weight) in enumerate(specs)
    ]


class ScriptedDigestClient(MemoryDigestClient):
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.summary_calls: List[int] = []
        self.consolidation_calls: List[int] = []

    async def summarize(self, character_name: str, memories: Sequence[Memory]) -> str:
        self.summary_calls.append(len(memories))
        if self.fail:
            raise DigestError("summary backend down")
        return f"{character_name} summary #{len(self.summary_calls)}"

    async def consolidate(self, character_name: str, memories: Sequence[Memory]) -> ConsolidationResult:
        self.consolidation_calls.append(len(memories))
        if self.fail:
            raise DigestError("consolidation backend down")
        return ConsolidationResult(
            consolidated_memory=f"{character_name} had a memorable week.",
            primary_emotion="reflective",
            tags=["week", "town"],
        )


def test_emotional_weight_table():
    assert emotional_weight_for("Ecstatic") == 95
    assert emotional_weight_for("sad") == 30
    assert emotional_weight_for("puzzled") == 50


def test_bound_keeps_top_weighted_in_chronological_order():
    memories = _memories(("a", 10), ("b", 90), ("c", 50), ("d", 90), ("e", 20))

    bounded = bound_memories(memories, 3)

    assert [m.content for m in bounded] == ["b", "c", "d"]


def test_bound_breaks_weight_ties_by_recency():
    memories = _memories(("old", 40), ("mid", 40), ("new", 40))

    bounded = bound_memories(memories, 2)

    assert [m.content for m in bounded] == ["mid", "new"]


def test_bound_leaves_short_lists_alone():
    memories = _memories(("a", 10), ("b", 20))

    assert bound_memories(memories, 5) == memories


def test_dedup_keeps_newest_occurrence_case_insensitively():
    memories = _memories(("Saw Tom", 30), ("walked", 10), ("  saw tom ", 60))

    deduped = deduplicate_memories(memories)

    assert [m.content for m in deduped] == ["walked", "  saw tom "]
    assert deduped[1].emotional_weight == 60


def test_dedup_is_idempotent_and_pure():
    memories = _memories(("x", 1), ("X", 2), ("y", 3))
    original = list(memories)

    once = deduplicate_memories(memories)
    twice = deduplicate_memories(once)

    assert once == twice
    assert memories == original


def test_maintenance_sweep_bounds_every_character(make_store, make_character):
    alice = make_character("alice", 1, 1)
    alice.memories = _memories(*[(f"m{i}", i) for i in range(12)])
    bob = make_character("bob", 2, 2)
    bob.memories = _memories(("dup", 5), ("DUP", 6))
    store = make_store([alice, bob])
    manager = MemoryManager(store, MemorySettings(max_memories=5))

    removed = manager.maintenance_sweep()

    assert removed == 7 + 1
    assert [m.content for m in store.characters["alice"].memories] == ["m7", "m8", "m9", "m10", "m11"]
    assert [m.content for m in store.characters["bob"].memories] == ["DUP"]


def test_periodic_wipe_runs_on_interval(make_store, make_character, clock):
    alice = make_character("alice", 1, 1)
    alice.memories = _memories(("same", 10), ("same", 20))
    store = make_store([alice])
    manager = MemoryManager(store, MemorySettings(strategy="periodic", wipe_interval=10, assumed_tick_seconds=3))

    assert manager.check_periodic_wipe()
    assert store.last_memory_wipe == clock()
    assert len(store.characters["alice"].memories) == 1

    clock.advance(30)
    assert not manager.check_periodic_wipe()
    clock.advance(1)
    assert manager.check_periodic_wipe()


def test_fifo_strategy_never_wipes(make_store, make_character):
    store = make_store([make_character("alice")])
    manager = MemoryManager(store, MemorySettings(strategy="fifo"))

    assert not manager.check_periodic_wipe()
    assert store.last_memory_wipe is None


@pytest.mark.asyncio
async def test_summary_requires_enough_memories(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 50) for i in range(10)])
    store = make_store([alice])
    client = ScriptedDigestClient()
    manager = MemoryManager(store, MemorySettings(), client)

    assert await manager.summary_for(store.characters["alice"], tick=1) is None
    assert client.summary_calls == []


@pytest.mark.asyncio
async def test_summary_is_cached_between_refreshes(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 50) for i in range(30)])
    store = make_store([alice])
    client = ScriptedDigestClient()
    manager = MemoryManager(store, MemorySettings(), client)
    character = store.characters["alice"]

    first = await manager.summary_for(character, tick=1)
    cached = await manager.summary_for(character, tick=20)
    refreshed = await manager.summary_for(character, tick=21)

    assert first == "Alice summary #1"
    assert cached == first
    assert refreshed == "Alice summary #2"
    # Only the most recent window is summarized.
    assert client.summary_calls == [15, 15]


@pytest.mark.asyncio
async def test_summary_failure_keeps_previous_digest(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 50) for i in range(12)])
    store = make_store([alice])
    client = ScriptedDigestClient()
    manager = MemoryManager(store, MemorySettings(), client)
    character = store.characters["alice"]

    first = await manager.summary_for(character, tick=1)
    client.fail = True
    assert await manager.summary_for(character, tick=40) == first


@pytest.mark.asyncio
async def test_consolidation_replaces_recent_batch(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 40) for i in range(25)])
    store = make_store([alice])
    manager = MemoryManager(store, MemorySettings(), ScriptedDigestClient())
    character = store.characters["alice"]

    assert await manager.consolidate(character)

    memories = character.memories
    assert len(memories) == 5 + 1
    assert [m.content for m in memories[:5]] == ["m0", "m1", "m2", "m3", "m4"]
    consolidated = memories[-1]
    assert consolidated.is_consolidated
    assert consolidated.emotional_weight == 85
    assert consolidated.replaced_count == 20
    assert consolidated.tags == ["consolidated", "week", "town"]


@pytest.mark.asyncio
async def test_consolidation_skips_small_memory_sets(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 40) for i in range(14)])
    store = make_store([alice])
    client = ScriptedDigestClient()
    manager = MemoryManager(store, MemorySettings(), client)

    assert not await manager.consolidate(store.characters["alice"])
    assert client.consolidation_calls == []


@pytest.mark.asyncio
async def test_consolidation_failure_leaves_memories_untouched(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 40) for i in range(20)])
    store = make_store([alice])
    manager = MemoryManager(store, MemorySettings(), ScriptedDigestClient(fail=True))
    before = list(store.characters["alice"].memories)

    assert not await manager.consolidate(store.characters["alice"])
    assert store.characters["alice"].memories == before


@pytest.mark.asyncio
async def test_summary_dropped_once_memories_shrink_below_gate(make_store, make_character):
    alice = make_character("alice")
    alice.memories = _memories(*[(f"m{i}", 50 + i) for i in range(12)])
    store = make_store([alice])
    client = ScriptedDigestClient()
    manager = MemoryManager(store, MemorySettings(max_memories=8), client)
    character = store.characters["alice"]

    assert await manager.summary_for(character, tick=1) == "Alice summary #1"

    manager.bound_sweep()

    assert len(character.memories) == 8
    assert await manager.summary_for(character, tick=2) is None
    assert manager.cached_summary("alice") is None
    assert client.summary_calls == [12]


@pytest.mark.asyncio
async def test_consolidation_failure_for_one_character_spares_the_rest(make_store, make_character):
    class FlakyDigestClient(ScriptedDigestClient):
        def __init__(self) -> None:
            super().__init__()
            self.names: List[str] = []

        async def consolidate(self, character_name: str, memories: Sequence[Memory]) -> ConsolidationResult:
            self.names.append(character_name)
            if character_name == "Alice":
                raise asyncio.TimeoutError()
            return await super().consolidate(character_name, memories)

    alice = make_character("alice")
    alice.memories = _memories(*[(f"a{i}", 40) for i in range(20)])
    bob = make_character("bob", 1, 1)
    bob.memories = _memories(*[(f"b{i}", 40) for i in range(20)])
    store = make_store([alice, bob])
    client = FlakyDigestClient()
    manager = MemoryManager(store, MemorySettings(), client)

    assert await manager.consolidate_all() == 1

    assert client.names == ["Alice", "Bob"]
    assert len(store.characters["alice"].memories) == 20
    assert [m.is_consolidated for m in store.characters["bob"].memories] == [True]
