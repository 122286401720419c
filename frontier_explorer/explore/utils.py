# explore/utils.py
import math
from typing import Tuple


def ij_to_xy(i: float, j: float, origin_xy: Tuple[float, float], resolution: float) -> Tuple[float, float]:
    """
    Convert grid index (i,j) to world meters (x,y).
    origin_xy: world coords (x0, y0) of cell (0,0).
    resolution: meters per cell.
    Consistent with OccupancyGridSnapshot.grid_to_world.
    """
    x0, y0 = origin_xy
    x = x0 + j * resolution
    y = y0 + i * resolution
    return (x, y)


def wrap_angle(angle: float) -> float:
    """Wrap an angle to [-pi, pi)."""
    return (angle + math.pi) % (2 * math.pi) - math.pi


def distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])
