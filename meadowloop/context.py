"""
Context construction: what one character knows at the moment it decides.

The context bundle is deliberately bounded. A character sees:
- other living characters within the social radius (Manhattan distance)
- its most recent active conversation, if it saw activity in the last few minutes
- a conversation-priority flag when a nearby character spoke moments ago
- a handful of recent world events from the last hour, as short summaries
- a cached memory summary (only for characters with enough memories), or its
  highest-weight memories when no summary is available
- the zones it can be directed to
- the oldest pending scenario injection addressed to it or to everyone

Contexts for a tick are all built before any action executes, so every
decision in a tick sees the same start-of-tick world.

Usage:
    builder = ContextBuilder(store, conversations, memory, settings)
    context = await builder.build(character, tick=12, last_speech_at=engine_state.last_speech_at)
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Mapping, Optional

from meadowloop.config import SimulationSettings
from meadowloop.conversations import ConversationManager
from meadowloop.memory import MemoryManager
from meadowloop.schemas import (
    Character,
    CharacterContext,
    ConversationExcerpt,
    ConversationLine,
    Memory,
    NearbyCharacter,
)
from meadowloop.store import WorldStore

KEY_MEMORY_LIMIT = 5


class ContextBuilder:
    def __init__(
        self,
        store: WorldStore,
        conversations: ConversationManager,
        memory: MemoryManager,
        settings: SimulationSettings,
    ) -> None:
        self.store = store
        self.conversations = conversations
        self.memory = memory
        self.settings = settings

    async def build(
        self,
        character: Character,
        *,
        tick: int,
        last_speech_at: Mapping[str, datetime],
    ) -> CharacterContext:
        """Assemble the context bundle for ``character``.

        The memory summary is the only step that may call out to the digest
        client, and only on its refresh cadence.
        """

        now = self.store.clock()
        nearby = sorted(
            self.store.nearby_characters(character, self.settings.probability.social_radius),
            key=lambda other: (character.position.distance_to(other.position), other.name),
        )
        zone = self.store.get_zone(character.position.zone) if character.position.zone else None

        summary = await self.memory.summary_for(character, tick)

        return CharacterContext(
            character_id=character.id,
            tick=tick,
            timestamp=now,
            position=character.position.model_copy(),
            location_name=zone.name if zone else None,
            current_emotion=character.current_emotion,
            environment=self.store.describe_environment(),
            nearby_characters=[
                NearbyCharacter(
                    id=other.id,
                    name=other.name,
                    emotion=other.current_emotion,
                    distance=character.position.distance_to(other.position),
                    occupation=other.occupation,
                )
                for other in nearby
            ],
            ongoing_conversation=self._conversation_excerpt(character),
            conversation_priority=self._priority_speaker(nearby, last_speech_at, now),
            recent_events=[
                event.summary
                for event in self.store.recent_events(
                    limit=self.settings.recent_event_limit,
                    within_seconds=self.settings.recent_event_window_seconds,
                )
            ],
            memory_summary=summary,
            key_memories=[] if summary else _key_memories(character.memories),
            available_zones=[z.name for z in self.store.available_zones()],
            injection=self.store.next_injection_for(character.id),
        )

    def _conversation_excerpt(self, character: Character) -> Optional[ConversationExcerpt]:
        conversation = self.conversations.ongoing_for(character.id)
        if conversation is None:
            return None
        limit = self.settings.conversation.context_message_limit
        return ConversationExcerpt(
            id=conversation.id,
            participants=[self._name(pid) for pid in conversation.participants],
            recent_messages=[
                ConversationLine(speaker=self._name(m.speaker_id), content=m.content, emotion=m.emotion)
                for m in conversation.messages[-limit:]
            ],
        )

    def _priority_speaker(
        self,
        nearby: List[Character],
        last_speech_at: Mapping[str, datetime],
        now: datetime,
    ) -> Optional[str]:
        window = self.settings.conversation.priority_window_seconds
        latest: Optional[tuple[datetime, str]] = None
        for other in nearby:
            spoke_at = last_speech_at.get(other.id)
            if spoke_at is None or (now - spoke_at).total_seconds() > window:
                continue
            if latest is None or spoke_at > latest[0]:
                latest = (spoke_at, other.name)
        return latest[1] if latest else None

    def _name(self, character_id: str) -> str:
        character = self.store.get_character(character_id)
        return character.name if character else character_id


def _key_memories(memories: List[Memory]) -> List[str]:
    ranked = sorted(memories, key=lambda m: (m.emotional_weight, m.timestamp), reverse=True)
    return [memory.content for memory in ranked[:KEY_MEMORY_LIMIT]]


__all__ = ["ContextBuilder"]
