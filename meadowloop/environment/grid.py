"""Town map grid.

The town is a fixed ``width x height`` tile grid. Zones claim tiles; a tile
that no zone covers is open ground. ``TownGrid`` is an immutable view built
from the current zone list and is rebuilt by the store whenever zones change,
so walkability checks never observe a half-edited zone.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AbstractSet, Dict, Iterable, Iterator, Optional, Tuple

from meadowloop.schemas import Zone

Coord = Tuple[int, int]

NO_BLOCKED: frozenset[Coord] = frozenset()


@dataclass(frozen=True)
class TownGrid:
    """Immutable walkability view over the zone layout."""

    width: int
    height: int
    zones: Tuple[Zone, ...] = ()
    _tile_index: Dict[Coord, Zone] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_zones(cls, width: int, height: int, zones: Iterable[Zone]) -> "TownGrid":
        zone_tuple = tuple(zones)
        index: Dict[Coord, Zone] = {}
        for zone in zone_tuple:
            for tile in zone.tiles:
                # First zone listed wins when zones overlap.
                index.setdefault((tile.x, tile.y), zone)
        return cls(width=width, height=height, zones=zone_tuple, _tile_index=index)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def zone_at(self, x: int, y: int) -> Optional[Zone]:
        return self._tile_index.get((x, y))

    def is_walkable(self, x: int, y: int, blocked: AbstractSet[Coord] = NO_BLOCKED) -> bool:
        """True when (x, y) is in bounds, not blocked, and open or in a walkable zone."""

        if not self.in_bounds(x, y):
            return False
        if (x, y) in blocked:
            return False
        zone = self.zone_at(x, y)
        return zone is None or bool(zone.walkable)

    def neighbors(self, coord: Coord, blocked: AbstractSet[Coord] = NO_BLOCKED) -> Iterator[Coord]:
        """Walkable 4-directional neighbors of ``coord``."""

        x, y = coord
        for nx, ny in ((x + 1, y), (x - 1, y), (x, y + 1), (x, y - 1)):
            if self.is_walkable(nx, ny, blocked):
                yield nx, ny

    def walkable_tiles(self, zone: Zone, blocked: AbstractSet[Coord] = NO_BLOCKED) -> list[Coord]:
        """Tiles of ``zone`` a character could stand on right now."""

        return [
            (tile.x, tile.y)
            for tile in zone.tiles
            if self.zone_at(tile.x, tile.y) is zone and self.is_walkable(tile.x, tile.y, blocked)
        ]

    def nearest_walkable(self, coord: Coord, blocked: AbstractSet[Coord] = NO_BLOCKED) -> Optional[Coord]:
        """Closest walkable cell to ``coord`` by ring search, or None on a fully blocked map."""

        x, y = coord
        if self.is_walkable(x, y, blocked):
            return coord
        max_radius = self.width + self.height
        for radius in range(1, max_radius + 1):
            for candidate in _ring(x, y, radius):
                if self.is_walkable(*candidate, blocked):
                    return candidate
        return None


def _ring(x: int, y: int, radius: int) -> Iterator[Coord]:
    """Cells at exactly Manhattan distance ``radius`` from (x, y)."""

    for dx in range(-radius, radius + 1):
        dy = radius - abs(dx)
        yield x + dx, y + dy
        if dy:
            yield x + dx, y - dy


__all__ = ["Coord", "NO_BLOCKED", "TownGrid"]
