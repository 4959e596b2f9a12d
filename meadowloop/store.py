"""
World state store for MeadowLoop.

``WorldStore`` owns every piece of mutable simulation data: characters, zones,
conversations, the event log, scenario injections and the environment. It has
no scheduling logic. The engine's execution phase and the maintenance managers
are its only writers, and they run one at a time, so the store needs no locks.

Reads that feed decisions (nearby characters, walkability, zone lookup) are
computed from current state on demand. ``snapshot()`` returns a deep copy as a
``WorldState`` for persistence.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from meadowloop.config import SimulationSettings
from meadowloop.environment.grid import Coord, TownGrid
from meadowloop.environment.weather import describe_environment, set_weather, update_environment
from meadowloop.logging_utils import log_deterministic, log_info
from meadowloop.schemas import (
    Character,
    Conversation,
    EnvironmentState,
    EventType,
    GLOBAL_TARGET,
    Injection,
    Memory,
    Position,
    Relationship,
    Tile,
    WorldEvent,
    WorldState,
    Zone,
    new_id,
    utc_now,
)

Clock = Callable[[], datetime]

DEATH_MEMORY_WEIGHT = 100
RESURRECTION_MEMORY_WEIGHT = 95
AWARENESS_MEMORY_WEIGHT = 80


class WorldStore:
    """Mutable world state plus the mutation operations the engine relies on."""

    def __init__(
        self,
        state: Optional[WorldState] = None,
        *,
        settings: Optional[SimulationSettings] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        state = state.model_copy(deep=True) if state is not None else WorldState()
        self.settings = settings or SimulationSettings()
        self.clock: Clock = clock or utc_now
        self.rng = rng or random.Random()

        self.tick: int = state.tick
        self.characters: Dict[str, Character] = {c.id: c for c in state.characters}
        self.zones: List[Zone] = list(state.zones)
        self.conversations: List[Conversation] = list(state.conversations)
        self.events: List[WorldEvent] = list(state.events)
        self.injections: List[Injection] = list(state.injections)
        self.environment: EnvironmentState = state.environment
        self.last_memory_wipe: Optional[datetime] = state.last_memory_wipe
        self.is_loaded = False
        # Dataset the store was loaded from; saved deltas are computed against it.
        self.base_state: WorldState = WorldState()

        self._grid: Optional[TownGrid] = None
        self._sync_character_zones()

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> WorldState:
        return WorldState(
            tick=self.tick,
            characters=list(self.characters.values()),
            zones=self.zones,
            conversations=self.conversations,
            events=self.events,
            injections=self.injections,
            environment=self.environment,
            last_memory_wipe=self.last_memory_wipe,
        ).model_copy(deep=True)

    # ------------------------------------------------------------------
    # Grid & zones
    # ------------------------------------------------------------------

    @property
    def grid(self) -> TownGrid:
        if self._grid is None:
            self._grid = TownGrid.from_zones(
                self.settings.grid_width, self.settings.grid_height, self.zones
            )
        return self._grid

    def _zones_changed(self) -> None:
        self._grid = None
        self._sync_character_zones()

    def _sync_character_zones(self) -> None:
        grid = self.grid
        for character in self.characters.values():
            zone = grid.zone_at(character.position.x, character.position.y)
            character.position.zone = zone.id if zone else None

    def get_zone(self, zone_id: str) -> Optional[Zone]:
        return next((zone for zone in self.zones if zone.id == zone_id), None)

    def find_zone_by_name(self, name: str) -> Optional[Zone]:
        """Case-insensitive match on zone name, falling back to zone id."""

        needle = name.strip().lower()
        for zone in self.zones:
            if zone.name.lower() == needle:
                return zone
        for zone in self.zones:
            if zone.id.lower() == needle:
                return zone
        return None

    def zone_at(self, x: int, y: int) -> Optional[Zone]:
        return self.grid.zone_at(x, y)

    def available_zones(self) -> List[Zone]:
        return [zone for zone in self.zones if zone.is_open]

    def add_zone(self, zone: Zone | Dict[str, Any]) -> Zone:
        zone = Zone.model_validate(zone) if isinstance(zone, dict) else zone
        if self.get_zone(zone.id) is not None:
            raise ValueError(f"Zone {zone.id!r} already exists")
        self.zones.append(zone)
        self._zones_changed()
        log_deterministic(f"Zone added: {zone.name} ({len(zone.tiles)} tiles)")
        return zone

    def update_zone(self, zone_id: str, **updates: Any) -> Optional[Zone]:
        """Apply field updates to a zone; the id is never changed."""

        for index, zone in enumerate(self.zones):
            if zone.id == zone_id:
                updates.pop("id", None)
                data = zone.model_dump()
                if "type" in updates and "walkable" not in updates:
                    # Re-derive walkability from the new type.
                    data["walkable"] = None
                data.update(updates)
                self.zones[index] = Zone.model_validate(data)
                self._zones_changed()
                return self.zones[index]
        return None

    def delete_zone(self, zone_id: str) -> bool:
        before = len(self.zones)
        self.zones = [zone for zone in self.zones if zone.id != zone_id]
        if len(self.zones) == before:
            return False
        self._zones_changed()
        log_deterministic(f"Zone deleted: {zone_id}")
        return True

    def add_tiles(self, zone_id: str, tiles: Iterable[Coord]) -> int:
        """Add tiles to a zone, ignoring ones it already has. Returns the number added."""

        zone = self.get_zone(zone_id)
        if zone is None:
            return 0
        existing = {(tile.x, tile.y) for tile in zone.tiles}
        added = 0
        for x, y in tiles:
            if (x, y) not in existing and self.grid.in_bounds(x, y):
                zone.tiles.append(Tile(x=x, y=y))
                existing.add((x, y))
                added += 1
        if added:
            self._zones_changed()
        return added

    def remove_tiles(self, zone_id: str, tiles: Iterable[Coord]) -> int:
        zone = self.get_zone(zone_id)
        if zone is None:
            return 0
        doomed = set(tiles)
        kept = [tile for tile in zone.tiles if (tile.x, tile.y) not in doomed]
        removed = len(zone.tiles) - len(kept)
        if removed:
            zone.tiles = kept
            self._zones_changed()
        return removed

    def zone_bounds(self, zone_id: str) -> Optional[Dict[str, int]]:
        zone = self.get_zone(zone_id)
        if zone is None or not zone.tiles:
            return None
        xs = [tile.x for tile in zone.tiles]
        ys = [tile.y for tile in zone.tiles]
        return {"min_x": min(xs), "max_x": max(xs), "min_y": min(ys), "max_y": max(ys)}

    def resolve_zone_target(
        self,
        zone_name: str,
        *,
        blocked: Iterable[Coord] = (),
    ) -> Optional[Coord]:
        """Pick a walkable tile inside the named zone, or None."""

        zone = self.find_zone_by_name(zone_name)
        if zone is None or not zone.is_open:
            return None
        tiles = self.grid.walkable_tiles(zone, frozenset(blocked))
        if not tiles:
            return None
        return self.rng.choice(tiles)

    # ------------------------------------------------------------------
    # Characters
    # ------------------------------------------------------------------

    def get_character(self, character_id: str) -> Optional[Character]:
        return self.characters.get(character_id)

    def find_character_by_name(self, name: str) -> Optional[Character]:
        needle = name.strip().lower()
        return next(
            (c for c in self.characters.values() if c.name.lower() == needle),
            None,
        )

    def living_characters(self) -> List[Character]:
        return [c for c in self.characters.values() if not c.is_dead]

    def nearby_characters(self, character: Character, radius: int) -> List[Character]:
        """Other living characters within Manhattan distance ``radius``."""

        return [
            other
            for other in self.living_characters()
            if other.id != character.id and character.position.distance_to(other.position) <= radius
        ]

    def occupied_cells(self, *, exclude: Sequence[str] = ()) -> frozenset[Coord]:
        return frozenset(
            c.position.coords for c in self.living_characters() if c.id not in exclude
        )

    def create_character(self, data: Character | Dict[str, Any]) -> Character:
        """Add a character. Missing id/position are generated."""

        if isinstance(data, dict):
            data = dict(data)
            data.setdefault("id", new_id("char"))
            if "position" not in data:
                data["position"] = {
                    "x": self.rng.randrange(self.settings.grid_width),
                    "y": self.rng.randrange(self.settings.grid_height),
                }
            character = Character.model_validate(data)
        else:
            character = data
        if character.id in self.characters:
            raise ValueError(f"Character {character.id!r} already exists")
        self.characters[character.id] = character
        self._correct_position(character)
        log_deterministic(f"Character created: {character.name}")
        return character

    def update_character(self, character_id: str, **updates: Any) -> Optional[Character]:
        character = self.characters.get(character_id)
        if character is None:
            return None
        updates.pop("id", None)
        data = character.model_dump()
        data.update(updates)
        updated = Character.model_validate(data)
        self.characters[character_id] = updated
        self._correct_position(updated)
        return updated

    def delete_character(self, character_id: str) -> bool:
        character = self.characters.pop(character_id, None)
        if character is None:
            return False
        log_deterministic(f"Character deleted: {character.name}")
        return True

    def duplicate_character(self, character_id: str, new_name: Optional[str] = None) -> Optional[Character]:
        original = self.characters.get(character_id)
        if original is None:
            return None
        duplicate = original.model_copy(deep=True)
        duplicate.id = new_id(f"{character_id}_copy")
        duplicate.name = new_name or f"{original.name} (Copy)"
        duplicate.position = Position(
            x=min(self.settings.grid_width - 1, original.position.x + 2),
            y=min(self.settings.grid_height - 1, original.position.y + 1),
        )
        duplicate.memories = []
        duplicate.is_dead = False
        duplicate.cause_of_death = None
        duplicate.death_timestamp = None
        self.characters[duplicate.id] = duplicate
        self._correct_position(duplicate)
        log_deterministic(f"Duplicated character: {original.name} -> {duplicate.name}")
        return duplicate

    def move_character(self, character_id: str, coord: Coord) -> Position:
        character = self.characters[character_id]
        zone = self.grid.zone_at(*coord)
        character.position = Position(x=coord[0], y=coord[1], zone=zone.id if zone else None)
        return character.position

    def set_emotion(self, character_id: str, emotion: str) -> bool:
        """Set the current emotion; returns True if it changed."""

        character = self.characters[character_id]
        if character.current_emotion == emotion:
            return False
        character.current_emotion = emotion
        return True

    def add_memory(
        self,
        character_id: str,
        content: str,
        *,
        emotional_weight: int = 50,
        tags: Sequence[str] = (),
    ) -> Memory:
        memory = Memory(
            timestamp=self.clock(),
            content=content,
            emotional_weight=max(0, min(100, emotional_weight)),
            tags=list(tags),
        )
        self.characters[character_id].memories.append(memory)
        return memory

    def adjust_affinity(self, owner_id: str, target_id: str, delta: int) -> Optional[Relationship]:
        """Nudge ``owner``'s affinity toward ``target``, creating the relationship if needed."""

        owner = self.characters.get(owner_id)
        target = self.characters.get(target_id)
        if owner is None or target is None or owner_id == target_id:
            return None
        relationship = owner.relationship_with(target_id)
        if relationship is None:
            relationship = Relationship(target_id=target_id, target_name=target.name)
            owner.relationships.append(relationship)
        relationship.affinity = max(-100, min(100, relationship.affinity + delta))
        return relationship

    def set_dead(self, character_id: str, cause: str = "Unknown") -> bool:
        character = self.characters.get(character_id)
        if character is None or character.is_dead:
            return False
        now = self.clock()
        character.is_dead = True
        character.cause_of_death = cause
        character.death_timestamp = now
        character.current_emotion = "dead"
        self.add_memory(
            character_id,
            f"Death: {cause}",
            emotional_weight=DEATH_MEMORY_WEIGHT,
            tags=["death", "tragic", cause.lower()],
        )
        self._spread_news(character, f"{character.name} died: {cause}", tags=["death", "news"])
        self.record_event(
            EventType.DEATH,
            f"{character.name} died ({cause})",
            details={"cause": cause},
            involved=[character_id],
            location=character.position,
            tone="tragic",
        )
        log_info(f"{character.name} has died: {cause}")
        return True

    def resurrect(self, character_id: str, reason: str = "Miraculous revival") -> bool:
        character = self.characters.get(character_id)
        if character is None or not character.is_dead:
            return False
        previous_cause = character.cause_of_death
        character.is_dead = False
        character.cause_of_death = None
        character.death_timestamp = None
        character.current_emotion = "confused"
        self.add_memory(
            character_id,
            f"Resurrected: {reason}. Previous death: {previous_cause}",
            emotional_weight=RESURRECTION_MEMORY_WEIGHT,
            tags=["resurrection", "miracle", "second chance", reason.lower()],
        )
        self._spread_news(
            character, f"{character.name} came back to life: {reason}", tags=["resurrection", "news"]
        )
        self._correct_position(character)
        self.record_event(
            EventType.RESURRECTION,
            f"{character.name} was resurrected ({reason})",
            details={"reason": reason, "previous_cause": previous_cause},
            involved=[character_id],
            location=character.position,
            tone="miraculous",
        )
        log_info(f"{character.name} has been resurrected: {reason}")
        return True

    def _spread_news(self, subject: Character, content: str, *, tags: Sequence[str]) -> None:
        for other in self.living_characters():
            if other.id != subject.id:
                self.add_memory(other.id, content, emotional_weight=AWARENESS_MEMORY_WEIGHT, tags=tags)

    def ensure_walkable_positions(self) -> List[str]:
        """Move any living character standing on an unwalkable cell. Returns moved ids."""

        moved = []
        for character in self.living_characters():
            if self._correct_position(character):
                moved.append(character.id)
        return moved

    def _correct_position(self, character: Character) -> bool:
        grid = self.grid
        x, y = character.position.x, character.position.y
        if grid.is_walkable(x, y):
            zone = grid.zone_at(x, y)
            character.position.zone = zone.id if zone else None
            return False
        clamped = (min(max(x, 0), grid.width - 1), min(max(y, 0), grid.height - 1))
        replacement = grid.nearest_walkable(clamped)
        if replacement is None:
            return False
        self.move_character(character.id, replacement)
        log_deterministic(
            f"[{character.name}] Corrected position ({x}, {y}) -> {replacement}"
        )
        return True

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def record_event(
        self,
        event_type: EventType | str,
        summary: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        involved: Sequence[str] = (),
        location: Optional[Position] = None,
        tone: str = "neutral",
    ) -> WorldEvent:
        event = WorldEvent(
            type=event_type.value if isinstance(event_type, EventType) else event_type,
            timestamp=self.clock(),
            summary=summary,
            details=details or {},
            involved_characters=list(involved),
            location=location.model_copy() if location is not None else None,
            tone=tone,
        )
        self.events.append(event)
        overflow = len(self.events) - self.settings.event_retention
        if overflow > 0:
            del self.events[:overflow]
        return event

    def recent_events(self, *, limit: int, within_seconds: float) -> List[WorldEvent]:
        """Newest-first events no older than ``within_seconds``."""

        cutoff = self.clock() - timedelta(seconds=within_seconds)
        recent: List[WorldEvent] = []
        for event in reversed(self.events):
            if len(recent) >= limit:
                break
            if event.timestamp < cutoff:
                break
            recent.append(event)
        return recent

    def events_by_type(self, event_type: EventType | str) -> List[WorldEvent]:
        wanted = event_type.value if isinstance(event_type, EventType) else event_type
        return [event for event in self.events if event.type == wanted]

    # ------------------------------------------------------------------
    # Injections
    # ------------------------------------------------------------------

    def add_injection(self, target: str, content: str) -> Injection:
        if target != GLOBAL_TARGET and target not in self.characters:
            raise ValueError(f"Unknown injection target {target!r}")
        injection = Injection(target=target, content=content, timestamp=self.clock())
        self.injections.append(injection)
        log_info(f"Injection queued for {target}: {content[:50]}")
        return injection

    def pending_injections(self) -> List[Injection]:
        return [injection for injection in self.injections if not injection.processed]

    def next_injection_for(self, character_id: str) -> Optional[Injection]:
        for injection in self.injections:
            if injection.processed or character_id in injection.processed_by:
                continue
            if injection.target in (character_id, GLOBAL_TARGET):
                return injection
        return None

    def mark_injection_consumed(self, injection_id: str, character_id: str) -> bool:
        """Record consumption; returns True when the injection became fully processed."""

        injection = next((i for i in self.injections if i.id == injection_id), None)
        if injection is None or injection.processed:
            return False
        if character_id not in injection.processed_by:
            injection.processed_by.append(character_id)

        if injection.is_global:
            living = {c.id for c in self.living_characters()}
            done = living.issubset(injection.processed_by)
        else:
            done = character_id == injection.target

        if done:
            injection.processed = True
            self.record_event(
                EventType.INJECTION,
                f"Scenario event processed: {injection.content[:50]}",
                details={"injection_id": injection.id, "target": injection.target},
                involved=list(injection.processed_by),
            )
        return done

    def clear_processed_injections(self) -> int:
        before = len(self.injections)
        self.injections = [injection for injection in self.injections if not injection.processed]
        return before - len(self.injections)

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    def update_environment(self) -> EnvironmentState:
        self.environment = update_environment(self.environment, now=self.clock(), rng=self.rng)
        return self.environment

    def set_weather(self, weather: str, temperature: Optional[int] = None) -> EnvironmentState:
        self.environment = set_weather(
            self.environment, weather, now=self.clock(), rng=self.rng, temperature=temperature
        )
        return self.environment

    def describe_environment(self) -> str:
        return describe_environment(self.environment)


__all__ = ["Clock", "WorldStore"]
