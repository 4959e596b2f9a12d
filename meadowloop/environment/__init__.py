"""Town map, movement and weather helpers."""

from .grid import Coord, TownGrid
from .pathfinding import approach_step, find_path, get_valid_move_position, manhattan
from .weather import describe_environment, set_weather, update_environment

__all__ = [
    "Coord",
    "TownGrid",
    "approach_step",
    "describe_environment",
    "find_path",
    "get_valid_move_position",
    "manhattan",
    "set_weather",
    "update_environment",
]
