"""
PersistenceStrategy interface for pluggable world storage.

A saved world is a *delta* against the base dataset (the zones and characters
shipped in the data directory), not a full copy:

```json
{
  "version": 1,
  "tick": 42,
  "characters": {
    "modified": {"alice": {"position": {...}, "memories": [...]}},
    "added": [{...full character...}],
    "deleted": ["bob"]
  },
  "zones": {"added": [...], "modified": [...], "deleted": ["old-shed"]},
  "conversations": [...],
  "events": [...],
  "injections": [...],
  "environment": {...},
  "last_memory_wipe": "2025-01-01T12:00:00+00:00"
}
```

Characters carry only the fields that differ from the base; zones carry whole
zone records; everything the base dataset never defines (conversations,
events, injections, environment, counters) is stored in full.

Loading applies the delta to the base. A delta that cannot be parsed or
applied is logged and discarded, and the base is used unchanged, so a corrupt
save never stops the town from loading.

Two implementations:
1. InMemoryPersistence - dict-based, data lost on exit (tests, prototyping)
2. JsonPersistence - one JSON delta file on disk, I/O via ``asyncio.to_thread``

Usage pattern:
    persistence = JsonPersistence("meadowloop_state")
    await persistence.initialize()
    state = await persistence.load_world(base_state)
    ...
    await persistence.save_world(base_state, store.snapshot())
    await persistence.close()
"""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from .logging_utils import log_error, log_info
from .schemas import WorldState

DELTA_VERSION = 1
DELTA_FILENAME = "world_delta.json"

# Top-level WorldState fields stored whole in the delta.
_WHOLE_FIELDS = ("conversations", "events", "injections", "environment", "tick", "last_memory_wipe")


class WorldDeltaError(ValueError):
    """A saved delta is malformed or cannot be applied to the base dataset."""


# ============================================================================
# Delta computation
# ============================================================================


def _by_id(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    return {record["id"]: record for record in records}


def compute_world_delta(base: WorldState, current: WorldState) -> Dict[str, Any]:
    """Describe ``current`` as changes on top of ``base``."""

    base_dump = base.model_dump(mode="json")
    current_dump = current.model_dump(mode="json")

    base_characters = _by_id(base_dump["characters"])
    current_characters = _by_id(current_dump["characters"])
    modified_characters: Dict[str, Dict[str, Any]] = {}
    added_characters: List[Dict[str, Any]] = []
    for character_id, record in current_characters.items():
        original = base_characters.get(character_id)
        if original is None:
            added_characters.append(record)
            continue
        changed = {key: value for key, value in record.items() if original.get(key) != value}
        if changed:
            modified_characters[character_id] = changed

    base_zones = _by_id(base_dump["zones"])
    current_zones = _by_id(current_dump["zones"])

    delta: Dict[str, Any] = {
        "version": DELTA_VERSION,
        "characters": {
            "modified": modified_characters,
            "added": added_characters,
            "deleted": [cid for cid in base_characters if cid not in current_characters],
        },
        "zones": {
            "added": [zone for zid, zone in current_zones.items() if zid not in base_zones],
            "modified": [
                zone
                for zid, zone in current_zones.items()
                if zid in base_zones and base_zones[zid] != zone
            ],
            "deleted": [zid for zid in base_zones if zid not in current_zones],
        },
    }
    for field_name in _WHOLE_FIELDS:
        delta[field_name] = current_dump[field_name]
    return delta


def apply_world_delta(base: WorldState, delta: Any) -> WorldState:
    """Rebuild a world from ``base`` plus ``delta``.

    Raises:
        WorldDeltaError: If the delta has the wrong shape or produces invalid state
    """

    if not isinstance(delta, dict):
        raise WorldDeltaError("delta must be a JSON object")
    if delta.get("version", DELTA_VERSION) != DELTA_VERSION:
        raise WorldDeltaError(f"unsupported delta version {delta.get('version')!r}")

    payload = base.model_dump(mode="json")
    try:
        characters = _by_id(payload["characters"])
        character_changes = delta.get("characters") or {}
        for character_id in character_changes.get("deleted", []):
            characters.pop(character_id, None)
        for character_id, changes in (character_changes.get("modified") or {}).items():
            if character_id in characters:
                characters[character_id].update(changes)
        for record in character_changes.get("added", []):
            characters[record["id"]] = record

        zones = _by_id(payload["zones"])
        zone_changes = delta.get("zones") or {}
        for zone_id in zone_changes.get("deleted", []):
            zones.pop(zone_id, None)
        for record in [*zone_changes.get("modified", []), *zone_changes.get("added", [])]:
            zones[record["id"]] = record
    except (AttributeError, KeyError, TypeError, ValueError) as exc:
        raise WorldDeltaError(f"malformed delta: {exc!r}") from exc

    payload["characters"] = list(characters.values())
    payload["zones"] = list(zones.values())
    for field_name in _WHOLE_FIELDS:
        if field_name in delta:
            payload[field_name] = delta[field_name]

    try:
        return WorldState.model_validate(payload)
    except ValidationError as exc:
        raise WorldDeltaError(f"delta produces invalid world state: {exc}") from exc


# ============================================================================
# Strategies
# ============================================================================


class PersistenceStrategy(ABC):
    """Abstract base class for world persistence.

    Implementations only store and return the raw delta document;
    ``save_world`` / ``load_world`` handle the diffing and fallback.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Prepare the backend (create directories, open connections)."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def read_delta(self) -> Optional[Dict[str, Any]]:
        """Return the stored delta, ``None`` when nothing was saved.

        Raises:
            WorldDeltaError: If the stored document cannot be parsed
        """

    @abstractmethod
    async def write_delta(self, delta: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Forget saved changes so the next load returns the base dataset."""

    async def save_world(self, base: WorldState, state: WorldState) -> Dict[str, Any]:
        delta = compute_world_delta(base, state)
        await self.write_delta(delta)
        return delta

    async def load_world(self, base: WorldState) -> WorldState:
        """Base dataset with saved changes applied; the base alone if they are unusable."""

        try:
            delta = await self.read_delta()
            if delta is None:
                return base.model_copy(deep=True)
            state = apply_world_delta(base, delta)
        except WorldDeltaError as exc:
            log_error(f"Discarding saved world changes: {exc}")
            return base.model_copy(deep=True)
        log_info(
            f"Restored saved world at tick {state.tick} "
            f"({len(state.characters)} characters, {len(state.zones)} zones)"
        )
        return state


class InMemoryPersistence(PersistenceStrategy):
    """Keeps the latest delta in process memory. Data is lost on exit."""

    def __init__(self) -> None:
        self.delta: Optional[Dict[str, Any]] = None
        self.saves = 0

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        # Data is kept so callers can inspect it after a run.
        pass

    async def read_delta(self) -> Optional[Dict[str, Any]]:
        return json.loads(json.dumps(self.delta)) if self.delta is not None else None

    async def write_delta(self, delta: Dict[str, Any]) -> None:
        self.delta = json.loads(json.dumps(delta))
        self.saves += 1

    async def clear(self) -> None:
        self.delta = None


class JsonPersistence(PersistenceStrategy):
    """Stores the delta as pretty-printed JSON under ``base_path``.

    ```
    {base_path}/
      world_delta.json
    ```
    """

    def __init__(self, base_path: Path | str = "meadowloop_state"):
        self.base_path = Path(base_path)

    @property
    def delta_path(self) -> Path:
        return self.base_path / DELTA_FILENAME

    async def initialize(self) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def close(self) -> None:
        # Nothing to clean up for JSON persistence
        return None

    async def read_delta(self) -> Optional[Dict[str, Any]]:
        path = self.delta_path
        if not path.exists():
            return None
        try:
            text = await asyncio.to_thread(path.read_text, "utf-8")
            return json.loads(text)
        except (OSError, json.JSONDecodeError) as exc:
            raise WorldDeltaError(f"cannot read {path}: {exc}") from exc

    async def write_delta(self, delta: Dict[str, Any]) -> None:
        await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)
        tmp_path = self.delta_path.with_suffix(".tmp")
        await asyncio.to_thread(tmp_path.write_text, json.dumps(delta, indent=2), "utf-8")
        await asyncio.to_thread(tmp_path.replace, self.delta_path)

    async def clear(self) -> None:
        if self.delta_path.exists():
            await asyncio.to_thread(self.delta_path.unlink)


__all__ = [
    "InMemoryPersistence",
    "JsonPersistence",
    "PersistenceStrategy",
    "WorldDeltaError",
    "apply_world_delta",
    "compute_world_delta",
]
