"""Grid pathfinding (A*) and bounded per-tick movement.

Every function here is pure: it reads a ``TownGrid`` snapshot plus a set of
blocked cells (usually other characters' positions) and returns coordinates.
Nothing in the world is mutated.
"""

from __future__ import annotations

import heapq
from itertools import count
from typing import AbstractSet, Dict, Iterator, List, Optional

from .grid import NO_BLOCKED, Coord, TownGrid


def manhattan(a: Coord, b: Coord) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def find_path(
    grid: TownGrid,
    start: Coord,
    goal: Coord,
    blocked: AbstractSet[Coord] = NO_BLOCKED,
) -> List[Coord]:
    """Return the A* path from ``start`` to ``goal``.

    4-directional moves, unit cost, Manhattan heuristic. The returned path
    excludes ``start`` and ends at ``goal``; it is empty when the goal is
    unreachable or ``start == goal``. ``start`` itself is not required to be
    walkable so a character can always step off its current cell.
    """

    if start == goal:
        return []
    if not grid.is_walkable(*goal, blocked):
        return []

    tie_breaker = count()
    open_set: list[tuple[int, int, Coord]] = []
    heapq.heappush(open_set, (manhattan(start, goal), next(tie_breaker), start))
    came_from: Dict[Coord, Optional[Coord]] = {start: None}
    g_score: Dict[Coord, int] = {start: 0}

    while open_set:
        _, _, current = heapq.heappop(open_set)
        if current == goal:
            return _reconstruct_path(came_from, current)

        for neighbor in grid.neighbors(current, blocked):
            tentative = g_score[current] + 1
            if tentative < g_score.get(neighbor, 1_000_000):
                came_from[neighbor] = current
                g_score[neighbor] = tentative
                f_score = tentative + manhattan(neighbor, goal)
                heapq.heappush(open_set, (f_score, next(tie_breaker), neighbor))

    return []


def _reconstruct_path(came_from: Dict[Coord, Optional[Coord]], current: Coord) -> List[Coord]:
    path = []
    while came_from.get(current) is not None:
        path.append(current)
        current = came_from[current]  # type: ignore[assignment]
    path.reverse()
    return path


def _reachable_within(
    grid: TownGrid,
    start: Coord,
    goal: Coord,
    max_distance: int,
    blocked: AbstractSet[Coord],
) -> bool:
    path = find_path(grid, start, goal, blocked)
    return bool(path) and len(path) <= max_distance


def _greedy_candidates(start: Coord, goal: Coord, max_distance: int) -> Iterator[Coord]:
    """Straight and diagonal offsets toward ``goal``, largest stride first."""

    x, y = start
    sx = (goal[0] > x) - (goal[0] < x)
    sy = (goal[1] > y) - (goal[1] < y)
    for stride in range(max_distance, 0, -1):
        if sx and sy:
            yield x + sx * stride, y + sy * stride
        if sx:
            yield x + sx * stride, y
        if sy:
            yield x, y + sy * stride


def get_valid_move_position(
    grid: TownGrid,
    start: Coord,
    goal: Coord,
    max_distance: int,
    blocked: AbstractSet[Coord] = NO_BLOCKED,
) -> Coord:
    """Return where a character at ``start`` ends up this tick when heading to ``goal``.

    1. ``goal`` within ``max_distance`` and walkable: go straight there (as long
       as a walk of that length actually exists).
    2. Otherwise follow the A* path for at most ``max_distance`` steps.
    3. No path at all: try greedy straight/diagonal strides toward the goal and
       take the first walkable one reachable within ``max_distance``.
    4. Nothing works: stay put.
    """

    if max_distance <= 0 or start == goal:
        return start

    if manhattan(start, goal) <= max_distance and grid.is_walkable(*goal, blocked):
        if _reachable_within(grid, start, goal, max_distance, blocked):
            return goal

    path = find_path(grid, start, goal, blocked)
    if path:
        return path[min(max_distance, len(path)) - 1]

    for candidate in _greedy_candidates(start, goal, max_distance):
        if grid.is_walkable(*candidate, blocked) and _reachable_within(
            grid, start, candidate, max_distance, blocked
        ):
            return candidate

    return start


def approach_step(
    grid: TownGrid,
    start: Coord,
    target: Coord,
    max_distance: int,
    blocked: AbstractSet[Coord] = NO_BLOCKED,
) -> Coord:
    """Bounded step toward another character, stopping on a cell next to them.

    ``target`` is the other character's cell and must not be in ``blocked``.
    """

    if max_distance <= 0 or manhattan(start, target) <= 1:
        return start

    path = find_path(grid, start, target, blocked)
    if path:
        path = path[:-1]
        if not path:
            return start
        return path[min(max_distance, len(path)) - 1]

    # Target unreachable: get as close as the greedy fallback allows, never onto the target.
    destination = get_valid_move_position(grid, start, target, max_distance, blocked | {target})
    return destination


__all__ = ["approach_step", "find_path", "get_valid_move_position", "manhattan"]
