# explore/planner.py
"""
Planning port used by the exploration engine.

The engine builds one planner per exploration cycle from the latest grid
snapshot (PlannerFactory), then asks it for a world-frame path from the
robot position to the frontier goal. A failed plan raises PlanningFailure;
the engine treats that as a per-cycle failure and retries on the next tick.
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol, Tuple

from frontier_explorer.control.path_planner import AStarPlanner, simplify_path
from frontier_explorer.errors import PlanningFailure
from frontier_explorer.explore.frontiers import classify
from frontier_explorer.slam.interface import XY, Path
from frontier_explorer.slam.occupancy import OccupancyGridSnapshot

logger = logging.getLogger(__name__)


class Planner(Protocol):
    def plan(self, start_xy: XY, goal_xy: XY) -> Path:
        ...


PlannerFactory = Callable[[OccupancyGridSnapshot], Planner]


class GridPathPlanner:
    """
    A* over the occupancy snapshot.

    OCCUPIED cells are obstacles. UNKNOWN cells are traversable unless
    allow_unknown is False. The returned path starts exactly at start_xy and
    ends exactly at goal_xy; the cells in between are grid points. A goal
    cell too close to obstacles for margin_cells is approached through the
    nearest clear cell.
    """

    def __init__(
        self,
        snapshot: OccupancyGridSnapshot,
        allow_unknown: bool = True,
        allow_diagonal: bool = True,
        margin_cells: int = 0,
        simplify_tolerance: float = 0.0,
    ):
        self.snapshot = snapshot
        self.simplify_tolerance = simplify_tolerance
        self._astar = AStarPlanner(allow_diagonal=allow_diagonal, margin_cells=margin_cells)

        free, occupied, unknown = classify(snapshot)
        self.traversable = free | unknown if allow_unknown else free.copy()

    def plan(self, start_xy: XY, goal_xy: XY) -> Path:
        start_xy = (float(start_xy[0]), float(start_xy[1]))
        goal_xy = (float(goal_xy[0]), float(goal_xy[1]))

        goal_ij = self.snapshot.world_to_grid(*goal_xy)
        if not self.snapshot.in_bounds(*goal_ij):
            raise PlanningFailure(f"goal {goal_xy} lies outside the grid")
        start_ij = self.snapshot.world_to_grid(*start_xy)

        cells = self._astar.plan(start_ij, goal_ij, self.traversable)
        if cells is None:
            raise PlanningFailure(f"no path from {start_xy} to {goal_xy}")

        # keep cells the search moved the start or goal onto
        if cells[0] == start_ij:
            cells = cells[1:]
        if cells and cells[-1] == goal_ij:
            cells = cells[:-1]
        inner = [self.snapshot.grid_to_world(i, j) for i, j in cells]
        path = [start_xy] + inner + [goal_xy]

        if self.simplify_tolerance > 0:
            path = simplify_path(path, self.simplify_tolerance)

        logger.debug("[A*] %d cells -> %d waypoints", len(cells), len(path))
        return tuple(path)


def grid_planner_factory(
    allow_unknown: bool = True,
    allow_diagonal: bool = True,
    margin_cells: int = 0,
    simplify_tolerance: float = 0.0,
) -> PlannerFactory:
    """Factory building a GridPathPlanner against each new snapshot."""

    def build(snapshot: OccupancyGridSnapshot) -> GridPathPlanner:
        return GridPathPlanner(
            snapshot,
            allow_unknown=allow_unknown,
            allow_diagonal=allow_diagonal,
            margin_cells=margin_cells,
            simplify_tolerance=simplify_tolerance,
        )

    return build


def ensure_path(path) -> Path:
    """Validate a planner result and freeze it into a tuple of (x, y)."""
    if path is None:
        raise PlanningFailure("planner returned no path")
    frozen: Tuple[XY, ...] = tuple((float(p[0]), float(p[1])) for p in path)
    if not frozen:
        raise PlanningFailure("planner returned an empty path")
    return frozen
