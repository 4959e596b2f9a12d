"""
Memory management policies that keep each character's memory list bounded.

Policies:
- Deduplication: newest-first walk keeping the first occurrence of each
  case-insensitive, trimmed content string; chronological order restored.
- Bounding: above ``max_memories`` keep the top N by
  ``(emotional_weight desc, timestamp desc)``, then restore chronological order.
- Periodic wipe: with the ``periodic`` strategy, once enough wall-clock time
  has passed since the last wipe, run ``wipe_sweep``. Today that sweep
  deduplicates (it does not erase); it stays a separate entry point so a
  destructive wipe can replace it without touching the scheduler.
- Summary: a cached narrative digest of the most recent memories, refreshed
  on a tick cadence through the ``MemoryDigestClient``.
- Consolidation: the most recent batch of memories replaced by one synthetic
  high-weight memory produced by the ``MemoryDigestClient``.

The pure list functions (``deduplicate_memories``, ``bound_memories``) never
mutate their input.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from meadowloop.config import MemorySettings
from meadowloop.decision import DigestError, MemoryDigestClient
from meadowloop.logging_utils import log_deterministic, log_error, log_success, log_verbose
from meadowloop.schemas import Character, Memory
from meadowloop.store import WorldStore

# Emotion -> emotional weight used when a memory's weight comes from how the
# character felt at the time.
EMOTIONAL_WEIGHTS: Dict[str, int] = {
    "ecstatic": 95,
    "joyful": 85,
    "excited": 80,
    "angry": 80,
    "happy": 75,
    "anxious": 70,
    "frustrated": 70,
    "nostalgic": 65,
    "worried": 65,
    "content": 60,
    "peaceful": 60,
    "calm": 55,
    "contemplative": 55,
    "neutral": 50,
    "melancholic": 40,
    "lonely": 35,
    "sad": 30,
    "depressed": 20,
}
DEFAULT_EMOTIONAL_WEIGHT = 50


def emotional_weight_for(emotion: str) -> int:
    return EMOTIONAL_WEIGHTS.get(emotion.strip().lower(), DEFAULT_EMOTIONAL_WEIGHT)


def _content_key(memory: Memory) -> str:
    return memory.content.strip().casefold()


def deduplicate_memories(memories: Sequence[Memory]) -> List[Memory]:
    seen: set[str] = set()
    kept_newest_first: List[Memory] = []
    for memory in reversed(memories):
        key = _content_key(memory)
        if key in seen:
            continue
        seen.add(key)
        kept_newest_first.append(memory)
    kept_newest_first.reverse()
    return kept_newest_first


def bound_memories(memories: Sequence[Memory], maximum: int) -> List[Memory]:
    if len(memories) <= maximum:
        return list(memories)
    ranked = sorted(
        enumerate(memories),
        key=lambda item: (item[1].emotional_weight, item[1].timestamp),
        reverse=True,
    )
    keep = {index for index, _ in ranked[:maximum]}
    return [memory for index, memory in enumerate(memories) if index in keep]


class MemoryManager:
    """Runs the memory policies against every character in a ``WorldStore``."""

    def __init__(
        self,
        store: WorldStore,
        settings: MemorySettings,
        digest_client: Optional[MemoryDigestClient] = None,
    ) -> None:
        self.store = store
        self.settings = settings
        self.digest_client = digest_client
        # character id -> (summary text, tick it was computed on)
        self._summaries: Dict[str, Tuple[str, int]] = {}

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    def dedup_sweep(self) -> int:
        """Deduplicate every character's memories. Returns how many were dropped."""

        removed = 0
        for character in self.store.characters.values():
            deduped = deduplicate_memories(character.memories)
            if len(deduped) != len(character.memories):
                removed += len(character.memories) - len(deduped)
                log_verbose(
                    f"[{character.name}] Dedup: {len(character.memories)} -> {len(deduped)} memories"
                )
                character.memories = deduped
        return removed

    def bound_sweep(self) -> int:
        removed = 0
        for character in self.store.characters.values():
            bounded = bound_memories(character.memories, self.settings.max_memories)
            if len(bounded) != len(character.memories):
                removed += len(character.memories) - len(bounded)
                character.memories = bounded
        return removed

    def maintenance_sweep(self) -> int:
        removed = self.dedup_sweep() + self.bound_sweep()
        if removed:
            log_deterministic(f"Memory sweep removed {removed} memories")
        return removed

    def wipe_sweep(self) -> int:
        """Periodic wipe action: currently a deduplication sweep, not an erase."""

        return self.dedup_sweep()

    def check_periodic_wipe(self) -> bool:
        """Run ``wipe_sweep`` when the periodic strategy's interval has elapsed."""

        if self.settings.strategy != "periodic":
            return False
        now = self.store.clock()
        interval = timedelta(
            seconds=self.settings.wipe_interval * self.settings.assumed_tick_seconds
        )
        last = self.store.last_memory_wipe
        if last is not None and now - last <= interval:
            return False
        removed = self.wipe_sweep()
        self.store.last_memory_wipe = now
        log_deterministic(f"Periodic memory wipe ran ({removed} duplicates removed)")
        return True

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def cached_summary(self, character_id: str) -> Optional[str]:
        cached = self._summaries.get(character_id)
        return cached[0] if cached else None

    def summary_due(self, character: Character, tick: int) -> bool:
        if self.digest_client is None:
            return False
        if len(character.memories) <= self.settings.summary_min_memories:
            return False
        cached = self._summaries.get(character.id)
        return cached is None or tick - cached[1] >= self.settings.summary_every

    async def summary_for(self, character: Character, tick: int) -> Optional[str]:
        """Cached digest for ``character``, refreshed when the cadence says so.

        Characters at or below ``summary_min_memories`` get no summary, and any
        digest cached while their list was longer is dropped.
        """

        if len(character.memories) <= self.settings.summary_min_memories:
            self._summaries.pop(character.id, None)
            return None
        if not self.summary_due(character, tick):
            return self.cached_summary(character.id)
        recent = list(character.memories[-self.settings.summary_window:])
        try:
            summary = await self.digest_client.summarize(character.name, recent)
        except DigestError as exc:
            log_error(f"[{character.name}] Memory summary failed: {exc}")
            return self.cached_summary(character.id)
        self._summaries[character.id] = (summary, tick)
        return summary

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    async def consolidate(self, character: Character) -> bool:
        """Replace the most recent batch of memories with one consolidated memory."""

        if self.digest_client is None:
            return False
        if len(character.memories) < self.settings.consolidation_min_memories:
            return False

        batch_size = self.settings.consolidation_batch
        batch = list(character.memories[-batch_size:])
        batch_ids = {memory.id for memory in batch}
        try:
            result = await self.digest_client.consolidate(character.name, batch)
        except DigestError as exc:
            log_error(f"[{character.name}] Memory consolidation failed: {exc}")
            return False

        consolidated = Memory(
            timestamp=self.store.clock(),
            content=result.consolidated_memory,
            emotional_weight=self.settings.consolidated_weight,
            tags=["consolidated", *result.tags],
            is_consolidated=True,
            replaced_count=len(batch),
        )
        # Memories appended while the call was in flight stay after the new one.
        remaining = [m for m in character.memories if m.id not in batch_ids]
        newer = [m for m in remaining if m.timestamp > batch[-1].timestamp]
        older = [m for m in remaining if m.timestamp <= batch[-1].timestamp]
        character.memories = [*older, consolidated, *newer]
        self._summaries.pop(character.id, None)
        log_success(
            f"[{character.name}] Consolidated {len(batch)} memories ({result.primary_emotion})"
        )
        return True

    async def consolidate_all(self) -> int:
        consolidated = 0
        for character in self.store.living_characters():
            try:
                done = await self.consolidate(character)
            except Exception as exc:
                log_error(f"[{character.name}] Memory consolidation failed: {exc!r}")
                continue
            if done:
                consolidated += 1
        return consolidated


__all__ = [
    "EMOTIONAL_WEIGHTS",
    "MemoryManager",
    "bound_memories",
    "deduplicate_memories",
    "emotional_weight_for",
]
