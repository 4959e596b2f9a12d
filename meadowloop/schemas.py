"""
Pydantic schemas for the MeadowLoop simulation engine.

All data structures shared between the engine, the world store, the decision
clients, and the persistence layer are defined here.

Design Philosophy:
- Characters, zones, conversations and events are plain pydantic records; all
  mutation logic lives in the store and the managers, never on the models
- Field names are snake_case, but legacy camelCase keys from authored JSON
  datasets (``bigFive``, ``currentEmotion``, ``isDead``...) are accepted on input
- Events are frozen once built (append-only log)
- Timestamps are timezone-aware datetimes; engine time comes from an injected clock
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


# Zone types that block movement unless a zone explicitly says otherwise.
NON_WALKABLE_ZONE_TYPES = frozenset({"solid", "wall", "building", "obstacle"})

GLOBAL_TARGET = "global"


def new_id(prefix: str) -> str:
    """Return a short unique identifier such as ``evt_1f2e3d4c5b6a``."""

    return f"{prefix}_{uuid4().hex[:12]}"


def utc_now() -> datetime:
    """Default wall clock used when no clock is injected."""

    return datetime.now(timezone.utc)


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


# ============================================================================
# Character Schemas
# ============================================================================


class BigFive(BaseModel):
    """Big Five personality scores, each on a 0-100 scale."""

    openness: int = Field(50, ge=0, le=100)
    conscientiousness: int = Field(50, ge=0, le=100)
    extraversion: int = Field(50, ge=0, le=100)
    agreeableness: int = Field(50, ge=0, le=100)
    neuroticism: int = Field(50, ge=0, le=100)


class Position(BaseModel):
    """Grid position of a character plus the zone it currently stands in."""

    x: int
    y: int
    zone: Optional[str] = Field(None, description="Zone id covering (x, y), if any")

    @property
    def coords(self) -> tuple[int, int]:
        return (self.x, self.y)

    def distance_to(self, other: "Position") -> int:
        """Manhattan distance in grid steps."""

        return abs(self.x - other.x) + abs(self.y - other.y)


class Memory(BaseModel):
    """Single entry in a character's memory list (newest appended last)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: new_id("mem"))
    timestamp: datetime = Field(default_factory=utc_now)
    content: str
    emotional_weight: int = Field(
        50, ge=0, le=100, validation_alias=_alias("emotional_weight", "emotionalWeight")
    )
    tags: List[str] = Field(default_factory=list)
    is_consolidated: bool = Field(False, validation_alias=_alias("is_consolidated", "isConsolidated"))
    replaced_count: Optional[int] = Field(
        None,
        validation_alias=_alias("replaced_count", "replacedCount"),
        description="Number of memories a consolidated memory stands in for",
    )


class Relationship(BaseModel):
    """Directed relationship from the owning character to ``target_id``.

    Affinity is keyed by the target's stable id. ``target_name`` is a display
    label only; datasets that carry names alone are migrated at load time.
    """

    model_config = ConfigDict(populate_by_name=True)

    target_id: Optional[str] = Field(None, validation_alias=_alias("target_id", "targetId"))
    target_name: Optional[str] = Field(None, validation_alias=_alias("target_name", "targetName", "name"))
    type: str = "acquaintance"
    affinity: int = Field(0, ge=-100, le=100)
    notes: str = ""

    @field_validator("affinity", mode="before")
    @classmethod
    def _clamp_affinity(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return max(-100, min(100, int(value)))
        return value


class Character(BaseModel):
    """A simulated townsperson: identity, personality and mutable state."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    age: Optional[int] = None
    occupation: str = ""
    description: str = ""

    # Static personality
    mbti: str = Field("ENFP", validation_alias=_alias("mbti", "MBTI"))
    big_five: BigFive = Field(default_factory=BigFive, validation_alias=_alias("big_five", "bigFive"))
    desires: List[str] = Field(default_factory=list)
    mental_health: List[str] = Field(
        default_factory=list, validation_alias=_alias("mental_health", "mentalHealth")
    )

    # Mutable simulation state
    position: Position = Field(default_factory=lambda: Position(x=0, y=0))
    current_emotion: str = Field(
        "neutral", validation_alias=_alias("current_emotion", "currentEmotion")
    )
    is_dead: bool = Field(False, validation_alias=_alias("is_dead", "isDead"))
    cause_of_death: Optional[str] = Field(
        None, validation_alias=_alias("cause_of_death", "causeOfDeath")
    )
    death_timestamp: Optional[datetime] = Field(
        None, validation_alias=_alias("death_timestamp", "deathTimestamp")
    )

    memories: List[Memory] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)

    @field_validator("desires", "mental_health", mode="before")
    @classmethod
    def _unique_strings(cls, value: Any) -> Any:
        # Sets of strings: keep first occurrence order, drop repeats.
        if isinstance(value, (list, tuple, set)):
            seen: Dict[str, None] = {}
            for item in value:
                seen.setdefault(str(item), None)
            return list(seen)
        return value

    @field_validator("relationships", mode="before")
    @classmethod
    def _accept_legacy_relationships(cls, value: Any) -> Any:
        # Legacy datasets store a bare list of names, or a {name: type} mapping.
        if isinstance(value, dict):
            return [{"target_name": name, "type": rel_type} for name, rel_type in value.items()]
        if isinstance(value, list):
            return [
                {"target_name": item} if isinstance(item, str) else item
                for item in value
            ]
        return value

    def relationship_with(self, target_id: str) -> Optional[Relationship]:
        for relationship in self.relationships:
            if relationship.target_id == target_id:
                return relationship
        return None


# ============================================================================
# Zone Schemas
# ============================================================================


class Tile(BaseModel):
    """Grid coordinate covered by a zone."""

    model_config = ConfigDict(frozen=True)

    x: int
    y: int


class Zone(BaseModel):
    """Named region of the map built from a set of unique tiles.

    ``walkable`` is optional on input. When absent it resolves from ``type``:
    solid, wall, building and obstacle zones block movement, everything else is
    walkable. Duplicate tiles collapse to one.
    """

    id: str
    name: str
    type: str = "public"
    tiles: List[Tile] = Field(default_factory=list)
    walkable: Optional[bool] = None
    description: str = ""
    owner: Optional[str] = None

    @model_validator(mode="after")
    def _resolve_defaults(self) -> "Zone":
        if self.walkable is None:
            self.walkable = self.type.lower() not in NON_WALKABLE_ZONE_TYPES
        unique: Dict[tuple[int, int], Tile] = {}
        for tile in self.tiles:
            unique.setdefault((tile.x, tile.y), tile)
        if len(unique) != len(self.tiles):
            self.tiles = list(unique.values())
        return self

    def contains(self, x: int, y: int) -> bool:
        return any(tile.x == x and tile.y == y for tile in self.tiles)

    @property
    def is_open(self) -> bool:
        """True when characters may be directed into this zone."""

        return bool(self.walkable) and self.type.lower() not in NON_WALKABLE_ZONE_TYPES


# ============================================================================
# Conversation & Event Schemas
# ============================================================================


class Message(BaseModel):
    id: str = Field(default_factory=lambda: new_id("msg"))
    speaker_id: str
    content: str
    emotion: str = "neutral"
    timestamp: datetime = Field(default_factory=utc_now)


class Conversation(BaseModel):
    """A conversation between nearby characters, or a single-speaker monologue."""

    id: str = Field(default_factory=lambda: new_id("conv"))
    participants: List[str] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    start_time: datetime = Field(default_factory=utc_now)
    last_message_at: Optional[datetime] = None
    is_active: bool = True
    end_time: Optional[datetime] = None
    initial_participant_count: int = Field(
        0, description="Participants at creation time; 0 means derive from participants"
    )

    @model_validator(mode="after")
    def _record_initial_participants(self) -> "Conversation":
        if self.initial_participant_count == 0:
            self.initial_participant_count = len(self.participants)
        return self

    @property
    def last_activity(self) -> datetime:
        return self.last_message_at or self.start_time

    @property
    def was_group(self) -> bool:
        return max(self.initial_participant_count, len(self.participants)) > 1


class EventType(str, Enum):
    MOVEMENT = "movement"
    CONVERSATION = "conversation"
    THOUGHT = "thought"
    DEATH = "death"
    RESURRECTION = "resurrection"
    INJECTION = "injection"
    SYSTEM = "system"


class WorldEvent(BaseModel):
    """Immutable entry in the world event log."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(default_factory=lambda: new_id("evt"))
    type: str
    timestamp: datetime = Field(default_factory=utc_now)
    summary: str
    details: Dict[str, Any] = Field(default_factory=dict)
    involved_characters: List[str] = Field(
        default_factory=list,
        validation_alias=_alias("involved_characters", "involvedCharacters"),
    )
    location: Optional[Position] = None
    tone: str = "neutral"


class Injection(BaseModel):
    """Externally authored scenario event for one character or everyone."""

    id: str = Field(default_factory=lambda: new_id("inj"))
    target: str = Field(GLOBAL_TARGET, description="Character id or 'global'")
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    processed: bool = False
    processed_by: List[str] = Field(default_factory=list)

    @property
    def is_global(self) -> bool:
        return self.target == GLOBAL_TARGET


# ============================================================================
# Environment
# ============================================================================


class WeatherRecord(BaseModel):
    weather: str
    temperature: int
    timestamp: datetime


class EnvironmentState(BaseModel):
    """Process-wide weather and time-of-day singleton."""

    weather: str = "clear"
    temperature: int = 20
    season: str = "spring"
    time_of_day: str = "day"
    last_weather_update: Optional[datetime] = None
    weather_history: List[WeatherRecord] = Field(default_factory=list)


# ============================================================================
# Actions (structured LLM output)
# ============================================================================


class ActionKind(str, Enum):
    SPEAK = "speak"
    APPROACH_CHARACTER = "approach_character"
    MOVE_TO_ZONE = "move_to_zone"
    STAY_IDLE = "stay_idle"
    UNRECOGNIZED = "unrecognized"


class MovementCommand(BaseModel):
    command: str = Field(..., description="move_to_zone | approach_character | stay_idle")
    target: Optional[str] = Field(None, description="Zone or character name, if any")


class ActionDecision(BaseModel):
    """Structured action returned by the decision client for one character."""

    internal_thoughts: str = Field("", description="Private monologue for this moment")
    emotion: str = Field("neutral", description="Single-word emotion tag")
    action_reasoning: str = Field("", description="Why the character chose this action")
    action: str = Field(..., description="speak | approach_character | move_to_zone | stay_idle")
    dialogue: Optional[str] = Field(None, description="Spoken words when action is speak")
    movement_command: Optional[MovementCommand] = None
    target_x: Optional[int] = Field(None, description="Explicit destination column, if known")
    target_y: Optional[int] = Field(None, description="Explicit destination row, if known")

    @field_validator("emotion", mode="before")
    @classmethod
    def _single_word_emotion(cls, value: Any) -> Any:
        if isinstance(value, str):
            words = value.strip().lower().split()
            return words[0] if words else "neutral"
        return value

    @property
    def kind(self) -> ActionKind:
        try:
            return ActionKind(self.action.strip().lower())
        except ValueError:
            return ActionKind.UNRECOGNIZED


class MemoryDigest(BaseModel):
    """Short narrative digest of a character's recent memories."""

    summary: str


class ConsolidationResult(BaseModel):
    consolidated_memory: str
    primary_emotion: str = "neutral"
    tags: List[str] = Field(default_factory=list, description="Up to three short tags")

    @field_validator("tags", mode="after")
    @classmethod
    def _limit_tags(cls, value: List[str]) -> List[str]:
        return [tag.strip().lower() for tag in value if tag.strip()][:3]


# ============================================================================
# Decision inputs
# ============================================================================


class CharacterProfile(BaseModel):
    """Read-only identity and personality snapshot sent with every decision request."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    age: Optional[int] = None
    occupation: str = ""
    description: str = ""
    mbti: str = "ENFP"
    big_five: BigFive = Field(default_factory=BigFive)
    desires: List[str] = Field(default_factory=list)
    mental_health: List[str] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)

    @classmethod
    def from_character(cls, character: Character) -> "CharacterProfile":
        return cls(
            id=character.id,
            name=character.name,
            age=character.age,
            occupation=character.occupation,
            description=character.description,
            mbti=character.mbti,
            big_five=character.big_five.model_copy(),
            desires=list(character.desires),
            mental_health=list(character.mental_health),
            relationships=[r.model_copy() for r in character.relationships],
        )


class NearbyCharacter(BaseModel):
    id: str
    name: str
    emotion: str
    distance: int
    occupation: str = ""


class ConversationLine(BaseModel):
    speaker: str
    content: str
    emotion: str = "neutral"


class ConversationExcerpt(BaseModel):
    id: str
    participants: List[str] = Field(default_factory=list, description="Participant names")
    recent_messages: List[ConversationLine] = Field(default_factory=list)


class CharacterContext(BaseModel):
    """Bounded situational context for one character on one tick."""

    character_id: str
    tick: int
    timestamp: datetime
    position: Position
    location_name: Optional[str] = None
    current_emotion: str = "neutral"
    environment: str = ""
    nearby_characters: List[NearbyCharacter] = Field(default_factory=list)
    ongoing_conversation: Optional[ConversationExcerpt] = None
    conversation_priority: Optional[str] = Field(
        None, description="Name of a nearby character who spoke moments ago"
    )
    recent_events: List[str] = Field(default_factory=list)
    memory_summary: Optional[str] = None
    key_memories: List[str] = Field(default_factory=list)
    available_zones: List[str] = Field(default_factory=list)
    injection: Optional[Injection] = None


# ============================================================================
# World snapshot
# ============================================================================


class WorldState(BaseModel):
    """Everything the engine needs to resume a simulation."""

    tick: int = 0
    characters: List[Character] = Field(default_factory=list)
    zones: List[Zone] = Field(default_factory=list)
    conversations: List[Conversation] = Field(default_factory=list)
    events: List[WorldEvent] = Field(default_factory=list)
    injections: List[Injection] = Field(default_factory=list)
    environment: EnvironmentState = Field(default_factory=EnvironmentState)
    last_memory_wipe: Optional[datetime] = None


__all__ = [
    "ActionDecision",
    "ActionKind",
    "BigFive",
    "Character",
    "CharacterContext",
    "CharacterProfile",
    "ConsolidationResult",
    "Conversation",
    "ConversationExcerpt",
    "ConversationLine",
    "EnvironmentState",
    "EventType",
    "GLOBAL_TARGET",
    "Injection",
    "Memory",
    "MemoryDigest",
    "Message",
    "MovementCommand",
    "NearbyCharacter",
    "NON_WALKABLE_ZONE_TYPES",
    "Position",
    "Relationship",
    "Tile",
    "WeatherRecord",
    "WorldEvent",
    "WorldState",
    "Zone",
    "new_id",
    "utc_now",
]
