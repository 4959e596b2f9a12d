"""Conversation lifecycle: find-or-create, message appends, and expiry.

A speaker joins the most recent active conversation that involves them or any
character standing nearby, as long as it saw activity within the reuse window.
Otherwise a new conversation starts with everyone nearby, or a single-speaker
monologue when nobody is around.

Cleanup runs every tick and ends (never deletes) conversations that went
quiet, lost their participants, or whose participants drifted apart.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Sequence

from meadowloop.config import ConversationSettings
from meadowloop.logging_utils import log_deterministic
from meadowloop.schemas import Character, Conversation, Message
from meadowloop.store import WorldStore


class ConversationManager:
    def __init__(self, store: WorldStore, settings: ConversationSettings) -> None:
        self.store = store
        self.settings = settings

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def conversations_for(self, character_id: str, *, active_only: bool = True) -> List[Conversation]:
        return [
            conversation
            for conversation in self.store.conversations
            if character_id in conversation.participants
            and (conversation.is_active or not active_only)
        ]

    def ongoing_for(self, character_id: str) -> Optional[Conversation]:
        """Most recent active conversation for ``character_id`` within the context window."""

        cutoff = self.store.clock() - timedelta(seconds=self.settings.context_window_seconds)
        candidates = [c for c in self.conversations_for(character_id) if c.last_activity >= cutoff]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.last_activity)

    def _reusable(self, participant_ids: Sequence[str]) -> Optional[Conversation]:
        cutoff = self.store.clock() - timedelta(seconds=self.settings.reuse_window_seconds)
        wanted = set(participant_ids)
        candidates = [
            conversation
            for conversation in self.store.conversations
            if conversation.is_active
            and conversation.last_activity >= cutoff
            and wanted.intersection(conversation.participants)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.last_activity)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def find_or_start(self, speaker: Character, nearby: Sequence[Character]) -> Conversation:
        nearby_ids = [c.id for c in nearby if c.id != speaker.id]
        conversation = self._reusable([speaker.id, *nearby_ids])
        if conversation is not None:
            for participant_id in [speaker.id, *nearby_ids]:
                if participant_id not in conversation.participants:
                    conversation.participants.append(participant_id)
            return conversation

        conversation = Conversation(
            participants=[speaker.id, *nearby_ids],
            start_time=self.store.clock(),
        )
        self.store.conversations.append(conversation)
        kind = "monologue" if not nearby_ids else f"conversation with {len(nearby_ids)} listener(s)"
        log_deterministic(f"[{speaker.name}] Started {kind} ({conversation.id})")
        return conversation

    def add_message(self, conversation: Conversation, speaker_id: str, content: str, emotion: str) -> Message:
        now = self.store.clock()
        message = Message(speaker_id=speaker_id, content=content, emotion=emotion, timestamp=now)
        conversation.messages.append(message)
        conversation.last_message_at = now
        return message

    def end(self, conversation: Conversation, reason: str) -> None:
        conversation.is_active = False
        conversation.end_time = self.store.clock()
        log_deterministic(f"Conversation {conversation.id} ended: {reason}")

    def cleanup(self) -> List[str]:
        """End expired conversations; returns the ids that were ended."""

        now = self.store.clock()
        ended: List[str] = []
        for conversation in self.store.conversations:
            if not conversation.is_active:
                continue
            idle = (now - conversation.last_activity).total_seconds()
            reason = self._expiry_reason(conversation, idle)
            if reason is not None:
                self.end(conversation, reason)
                ended.append(conversation.id)
        return ended

    def _expiry_reason(self, conversation: Conversation, idle_seconds: float) -> Optional[str]:
        if idle_seconds > self.settings.inactivity_timeout_seconds:
            return "inactive"

        if len(conversation.participants) == 1 and not conversation.was_group:
            if idle_seconds > self.settings.monologue_timeout_seconds:
                return "monologue expired"
            return None

        living = [
            character
            for character in (self.store.get_character(pid) for pid in conversation.participants)
            if character is not None and not character.is_dead
        ]
        if len(living) < 2:
            return "participants left"

        for index, first in enumerate(living):
            for second in living[index + 1:]:
                if first.position.distance_to(second.position) > self.settings.max_participant_distance:
                    return "participants drifted apart"
        return None


__all__ = ["ConversationManager"]
