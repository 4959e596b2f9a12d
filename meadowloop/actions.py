"""
Action interpretation and execution.

``interpret`` turns the decision client's ``ActionDecision`` into one member of
a closed set of action variants. Anything the engine does not recognise
becomes ``Unrecognized`` and is logged without touching the world.

``ActionExecutor.execute`` applies one action as a single state transition:

1. record the internal monologue (thought event + low-importance memory)
2. dispatch on the variant (speak / approach / move to zone / stay idle)
3. update the character's emotion if it changed
4. mark the scenario injection that was in context as consumed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

from meadowloop.config import SimulationSettings
from meadowloop.conversations import ConversationManager
from meadowloop.environment.grid import Coord
from meadowloop.environment.pathfinding import approach_step, get_valid_move_position
from meadowloop.logging_utils import log_deterministic, log_error, log_verbose
from meadowloop.memory import emotional_weight_for
from meadowloop.schemas import (
    ActionDecision,
    ActionKind,
    Character,
    CharacterContext,
    EventType,
    WorldEvent,
)
from meadowloop.store import WorldStore

THOUGHT_MEMORY_LIMIT = 120
SUMMARY_PREVIEW_LIMIT = 50
LOW_IMPORTANCE_CEILING = 40
IDLE_MEMORY_WEIGHT = 15
MOVEMENT_MEMORY_WEIGHT = 30
APPROACH_AFFINITY_BONUS = 3

# Affinity change applied between a speaker and each listener.
SPEECH_AFFINITY_DELTAS: Dict[str, int] = {
    "grateful": 8,
    "happy": 5,
    "joyful": 5,
    "neutral": 1,
    "frustrated": -5,
    "angry": -10,
}


# ============================================================================
# Action variants
# ============================================================================


@dataclass(frozen=True)
class Speak:
    dialogue: str
    kind: ActionKind = field(default=ActionKind.SPEAK, init=False)


@dataclass(frozen=True)
class ApproachCharacter:
    target_name: Optional[str] = None
    kind: ActionKind = field(default=ActionKind.APPROACH_CHARACTER, init=False)


@dataclass(frozen=True)
class MoveToZone:
    zone_name: Optional[str] = None
    target: Optional[Coord] = None
    kind: ActionKind = field(default=ActionKind.MOVE_TO_ZONE, init=False)


@dataclass(frozen=True)
class StayIdle:
    reasoning: str = ""
    kind: ActionKind = field(default=ActionKind.STAY_IDLE, init=False)


@dataclass(frozen=True)
class Unrecognized:
    raw_action: str
    kind: ActionKind = field(default=ActionKind.UNRECOGNIZED, init=False)


CharacterAction = Union[Speak, ApproachCharacter, MoveToZone, StayIdle, Unrecognized]


def interpret(decision: ActionDecision) -> CharacterAction:
    target_name = None
    if decision.movement_command is not None and decision.movement_command.target:
        target_name = decision.movement_command.target.strip() or None

    kind = decision.kind
    if kind is ActionKind.SPEAK:
        return Speak(dialogue=(decision.dialogue or "").strip())
    if kind is ActionKind.APPROACH_CHARACTER:
        return ApproachCharacter(target_name=target_name)
    if kind is ActionKind.MOVE_TO_ZONE:
        target = None
        if decision.target_x is not None and decision.target_y is not None:
            target = (decision.target_x, decision.target_y)
        return MoveToZone(zone_name=target_name, target=target)
    if kind is ActionKind.STAY_IDLE:
        return StayIdle(reasoning=decision.action_reasoning.strip())
    return Unrecognized(raw_action=decision.action)


def _preview(text: str, limit: int = SUMMARY_PREVIEW_LIMIT) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "..."


# ============================================================================
# Execution
# ============================================================================


@dataclass
class ExecutionOutcome:
    character_id: str
    kind: ActionKind
    events: List[WorldEvent] = field(default_factory=list)
    moved_to: Optional[Coord] = None
    emotion_changed: bool = False
    injection_processed: bool = False


class ActionExecutor:
    """Applies interpreted actions to the world store."""

    def __init__(
        self,
        store: WorldStore,
        conversations: ConversationManager,
        settings: SimulationSettings,
        last_speech_at: Dict[str, datetime],
    ) -> None:
        self.store = store
        self.conversations = conversations
        self.settings = settings
        self.last_speech_at = last_speech_at

    def execute(
        self,
        character_id: str,
        decision: ActionDecision,
        context: Optional[CharacterContext] = None,
    ) -> ExecutionOutcome:
        character = self.store.get_character(character_id)
        if character is None:
            raise KeyError(f"Unknown character {character_id!r}")

        action = interpret(decision)
        outcome = ExecutionOutcome(character_id=character_id, kind=action.kind)
        emotion = decision.emotion or character.current_emotion

        if decision.internal_thoughts.strip():
            self._record_thought(character, decision.internal_thoughts, emotion, outcome)

        if isinstance(action, Speak):
            self._speak(character, action, emotion, outcome)
        elif isinstance(action, ApproachCharacter):
            self._approach(character, action, decision, outcome)
        elif isinstance(action, MoveToZone):
            self._move_to_zone(character, action, decision, outcome)
        elif isinstance(action, StayIdle):
            self._stay_idle(character, action)
        else:
            log_error(f"[{character.name}] Unrecognized action {action.raw_action!r}; nothing applied")

        if decision.emotion:
            outcome.emotion_changed = self.store.set_emotion(character.id, decision.emotion)

        if context is not None and context.injection is not None:
            outcome.injection_processed = self.store.mark_injection_consumed(
                context.injection.id, character.id
            )

        return outcome

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _record_thought(self, character: Character, thoughts: str, emotion: str, outcome: ExecutionOutcome) -> None:
        thoughts = thoughts.strip()
        outcome.events.append(
            self.store.record_event(
                EventType.THOUGHT,
                f"{character.name} thinks: {_preview(thoughts)}",
                details={"internal_thoughts": thoughts, "emotion": emotion},
                involved=[character.id],
                location=character.position,
                tone=emotion,
            )
        )
        self.store.add_memory(
            character.id,
            thoughts[:THOUGHT_MEMORY_LIMIT],
            emotional_weight=min(emotional_weight_for(emotion), LOW_IMPORTANCE_CEILING),
            tags=["thought", emotion],
        )

    def _speak(self, character: Character, action: Speak, emotion: str, outcome: ExecutionOutcome) -> None:
        if not action.dialogue:
            log_error(f"[{character.name}] Chose to speak without dialogue; nothing said")
            return

        nearby = self.store.nearby_characters(character, self.settings.probability.social_radius)
        conversation = self.conversations.find_or_start(character, nearby)

        outcome.events.append(
            self.store.record_event(
                EventType.CONVERSATION,
                f'{character.name}: "{_preview(action.dialogue)}"',
                details={
                    "conversation_id": conversation.id,
                    "dialogue": action.dialogue,
                    "emotion": emotion,
                    "is_monologue": not nearby,
                    "listeners": [other.id for other in nearby],
                },
                involved=[character.id, *(other.id for other in nearby)],
                location=character.position,
                tone=emotion,
            )
        )
        self.conversations.add_message(conversation, character.id, action.dialogue, emotion)

        weight = emotional_weight_for(emotion)
        self.store.add_memory(
            character.id, f'I said: "{action.dialogue}"', emotional_weight=weight, tags=["speech", emotion]
        )
        delta = SPEECH_AFFINITY_DELTAS.get(emotion, 0)
        for listener in nearby:
            self.store.add_memory(
                listener.id,
                f'{character.name} said: "{action.dialogue}"',
                emotional_weight=weight,
                tags=["overheard", character.name.lower()],
            )
            if delta:
                self.store.adjust_affinity(character.id, listener.id, delta)
                self.store.adjust_affinity(listener.id, character.id, delta)

        self.last_speech_at[character.id] = self.store.clock()
        log_deterministic(
            f"[{character.name}] Said \"{_preview(action.dialogue)}\" to {len(nearby)} listener(s)"
        )

    def _approach(
        self,
        character: Character,
        action: ApproachCharacter,
        decision: ActionDecision,
        outcome: ExecutionOutcome,
    ) -> None:
        target = self._resolve_approach_target(character, action.target_name)
        if target is None:
            log_verbose(f"[{character.name}] Nobody to approach")
            return

        self.store.adjust_affinity(character.id, target.id, APPROACH_AFFINITY_BONUS)
        blocked = self._blocked_cells(character, also_allow=target.id)
        destination = approach_step(
            self.store.grid,
            character.position.coords,
            target.position.coords,
            self.settings.max_move_distance,
            blocked,
        )
        self._relocate(
            character,
            destination,
            outcome,
            summary=f"{character.name} approached {target.name}",
            details={"target_id": target.id, "reason": decision.action_reasoning},
            involved=[character.id, target.id],
            tone=decision.emotion,
        )

    def _resolve_approach_target(self, character: Character, target_name: Optional[str]) -> Optional[Character]:
        if target_name:
            named = self.store.find_character_by_name(target_name)
            if named is not None and not named.is_dead and named.id != character.id:
                return named
        candidates = self.store.nearby_characters(character, self.settings.approach_radius)
        if not candidates:
            return None
        return self.store.rng.choice(candidates)

    def _move_to_zone(
        self,
        character: Character,
        action: MoveToZone,
        decision: ActionDecision,
        outcome: ExecutionOutcome,
    ) -> None:
        blocked = self._blocked_cells(character)
        target = action.target
        if target is None and action.zone_name:
            target = self.store.resolve_zone_target(action.zone_name, blocked=blocked)
        if target is None:
            log_verbose(f"[{character.name}] No destination for move_to_zone ({action.zone_name})")
            return

        destination = get_valid_move_position(
            self.store.grid,
            character.position.coords,
            target,
            self.settings.max_move_distance,
            blocked,
        )
        zone_name = action.zone_name or self._zone_name_at(target) or "a new spot"
        self._relocate(
            character,
            destination,
            outcome,
            summary=f"{character.name} headed to {zone_name}",
            details={"zone": zone_name, "target": list(target), "reason": decision.action_reasoning},
            involved=[character.id],
            tone=decision.emotion,
        )

    def _stay_idle(self, character: Character, action: StayIdle) -> None:
        self.store.add_memory(
            character.id,
            action.reasoning or "I stayed where I was for a while.",
            emotional_weight=IDLE_MEMORY_WEIGHT,
            tags=["idle"],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _blocked_cells(self, character: Character, also_allow: Optional[str] = None) -> frozenset[Coord]:
        if not self.settings.avoid_characters:
            return frozenset()
        exclude = [character.id] + ([also_allow] if also_allow else [])
        return self.store.occupied_cells(exclude=exclude)

    def _zone_name_at(self, coord: Coord) -> Optional[str]:
        zone = self.store.zone_at(*coord)
        return zone.name if zone else None

    def _relocate(
        self,
        character: Character,
        destination: Coord,
        outcome: ExecutionOutcome,
        *,
        summary: str,
        details: dict,
        involved: List[str],
        tone: str,
    ) -> None:
        origin = character.position.model_copy()
        if destination == origin.coords:
            log_verbose(f"[{character.name}] No walkable step available; staying put")
            return

        new_position = self.store.move_character(character.id, destination)
        outcome.moved_to = destination
        outcome.events.append(
            self.store.record_event(
                EventType.MOVEMENT,
                summary,
                details={
                    **details,
                    "from": [origin.x, origin.y],
                    "to": [new_position.x, new_position.y],
                    "from_zone": origin.zone,
                    "to_zone": new_position.zone,
                },
                involved=involved,
                location=new_position,
                tone=tone,
            )
        )
        if new_position.zone != origin.zone and new_position.zone is not None:
            zone = self.store.get_zone(new_position.zone)
            self.store.add_memory(
                character.id,
                f"I walked to {zone.name if zone else new_position.zone}.",
                emotional_weight=MOVEMENT_MEMORY_WEIGHT,
                tags=["movement"],
            )
        log_deterministic(
            f"[{character.name}] Moved ({origin.x}, {origin.y}) -> ({new_position.x}, {new_position.y})"
        )


__all__ = [
    "ActionExecutor",
    "ApproachCharacter",
    "CharacterAction",
    "ExecutionOutcome",
    "MoveToZone",
    "Speak",
    "StayIdle",
    "Unrecognized",
    "interpret",
]
