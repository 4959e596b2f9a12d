"""
Town loading from JSON data directories.

A town's base dataset lives in a data directory:

```
{data_dir}/
  zones.json            # {"zones": [...]} or a bare list of zones
  characters/           # one character per file ...
    alice.json
    bob.json
  characters.json       # ... or a single list of characters
```

Loading is forgiving. Missing or malformed zone data falls back to a small
builtin town (Town Center, Residential Area, Market Street, Town Park), and
malformed character data falls back to an empty cast. The resulting store is
always marked loaded so callers never retry in a loop.

Relationship entries that only carry a character name are resolved to the
named character's id here, so affinity is always keyed by id afterwards.

Usage:
    loader = TownLoader(Path("examples/town/data"))
    base = loader.load_base()
    store = await load_world_store(loader, persistence=JsonPersistence("state"))
"""

import json
import random
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .config import Config, SimulationSettings
from .logging_utils import log_error, log_info
from .persistence import PersistenceStrategy
from .schemas import Character, Tile, WorldState, Zone
from .store import Clock, WorldStore


class WorldLoadError(RuntimeError):
    """The persistence backend could not be reached while loading the world."""


def _block(x_range: range, y_range: range) -> List[Tile]:
    return [Tile(x=x, y=y) for y in y_range for x in x_range]


def default_zones() -> List[Zone]:
    """Builtin four-zone town used when no zone data is available."""

    return [
        Zone(
            id="town-center",
            name="Town Center",
            type="public",
            tiles=_block(range(24, 27), range(18, 21)),
            description="Central gathering place of the town",
        ),
        Zone(
            id="residential-area",
            name="Residential Area",
            type="home",
            tiles=_block(range(8, 12), range(25, 28)),
            description="Cozy homes where townsfolk live",
        ),
        Zone(
            id="market-street",
            name="Market Street",
            type="street",
            tiles=_block(range(15, 23), range(18, 19)),
            description="Main thoroughfare connecting key locations",
        ),
        Zone(
            id="town-park",
            name="Town Park",
            type="park",
            tiles=_block(range(30, 34), range(15, 18)),
            description="Green space with trees and paths for relaxation",
        ),
    ]


class TownLoader:
    """Read the base dataset (zones + characters) from a data directory."""

    def __init__(self, data_dir: Optional[Path] = None):
        self.data_dir = Path(data_dir) if data_dir is not None else Config.DATA_DIR

    def load_base(self) -> WorldState:
        zones = self.load_zones()
        characters = self.load_characters()
        return WorldState(zones=zones, characters=characters)

    def load_zones(self) -> List[Zone]:
        path = self.data_dir / "zones.json"
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                data = data.get("zones")
            if not isinstance(data, list):
                raise ValueError("no zones array found")
            zones = [Zone.model_validate(item) for item in data]
        except (OSError, ValueError, ValidationError) as exc:
            log_error(f"Failed to load zones from {path} ({exc}); using builtin town")
            return default_zones()
        log_info(f"Loaded {len(zones)} zones from {path}")
        return zones

    def load_characters(self) -> List[Character]:
        try:
            raw = self._read_character_records()
            characters = [Character.model_validate(item) for item in raw]
        except (OSError, ValueError, ValidationError) as exc:
            log_error(f"Failed to load characters from {self.data_dir} ({exc}); starting empty")
            return []
        _link_relationships(characters)
        log_info(f"Loaded {len(characters)} characters from {self.data_dir}")
        return characters

    def _read_character_records(self) -> List[Dict[str, Any]]:
        directory = self.data_dir / "characters"
        if directory.is_dir():
            return [
                json.loads(path.read_text(encoding="utf-8"))
                for path in sorted(directory.glob("*.json"))
            ]
        single = self.data_dir / "characters.json"
        if single.exists():
            data = json.loads(single.read_text(encoding="utf-8"))
            if isinstance(data, dict):
                data = data.get("characters")
            if not isinstance(data, list):
                raise ValueError("no characters array found")
            return data
        return []


def _link_relationships(characters: List[Character]) -> None:
    """Fill ``target_id`` for relationships that only name their target."""

    by_name = {character.name.lower(): character for character in characters}
    by_id = {character.id: character for character in characters}
    for character in characters:
        for relationship in character.relationships:
            if relationship.target_id is None and relationship.target_name:
                target = by_name.get(relationship.target_name.lower())
                if target is not None:
                    relationship.target_id = target.id
            elif relationship.target_id in by_id and not relationship.target_name:
                relationship.target_name = by_id[relationship.target_id].name
        # Unresolvable legacy entries stay as name-only labels.


async def load_world_store(
    loader: TownLoader,
    *,
    persistence: Optional[PersistenceStrategy] = None,
    settings: Optional[SimulationSettings] = None,
    clock: Optional[Clock] = None,
    rng: Optional[random.Random] = None,
) -> WorldStore:
    """Build a ready-to-run store from the base dataset plus any saved changes.

    Raises:
        WorldLoadError: If the persistence backend cannot be initialized or read
    """

    base = loader.load_base()
    state = base
    if persistence is not None:
        try:
            await persistence.initialize()
            state = await persistence.load_world(base)
        except OSError as exc:
            raise WorldLoadError(f"Persistence backend unavailable: {exc}") from exc

    store = WorldStore(state, settings=settings, clock=clock, rng=rng)
    store.base_state = base
    moved = store.ensure_walkable_positions()
    if moved:
        log_info(f"Moved {len(moved)} character(s) off unwalkable tiles")
    store.is_loaded = True
    return store


__all__ = [
    "TownLoader",
    "WorldLoadError",
    "default_zones",
    "load_world_store",
]
