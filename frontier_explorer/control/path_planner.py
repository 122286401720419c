"""
A* Path Planning for Grid-Based Navigation

This module implements the A* search used behind the exploration planning
port. It works purely in grid space on a boolean "traversable" mask; the
conversion from / to world coordinates is done by the caller
(explore/planner.py) through the occupancy snapshot.
"""

from typing import Dict, List, Optional, Sequence, Tuple
from collections import deque
from itertools import count
import heapq
import logging
import math

import numpy as np

logger = logging.getLogger(__name__)

Cell = Tuple[int, int]

STRAIGHT_MOVES = ((0, 1), (1, 0), (0, -1), (-1, 0))
DIAGONAL_MOVES = ((1, 1), (1, -1), (-1, 1), (-1, -1))


class AStarPlanner:
    """
    A* over a traversable mask.

    8-connected by default; a diagonal step is only taken when both cells
    it squeezes between are traversable too. With margin_cells > 0 a cell
    is usable only if every cell within that Chebyshev radius is
    traversable. A start on a blocked cell, or a goal that only fails the
    margin, is moved to the nearest usable cell within start_search_radius.
    """

    def __init__(
        self,
        allow_diagonal: bool = True,
        heuristic: str = "euclidean",  # or "manhattan"
        margin_cells: int = 0,
        start_search_radius: int = 10,
    ):
        if heuristic not in ("euclidean", "manhattan"):
            raise ValueError(f"unknown heuristic {heuristic!r}")
        self.allow_diagonal = allow_diagonal
        self.heuristic_type = heuristic
        self.margin_cells = max(0, int(margin_cells))
        self.start_search_radius = start_search_radius
        self.moves = STRAIGHT_MOVES + (DIAGONAL_MOVES if allow_diagonal else ())

    def plan(self, start_ij: Cell, goal_ij: Cell, traversable: np.ndarray) -> Optional[List[Cell]]:
        """
        Plan a path from start to goal cell.

        A goal that is traversable but too close to an obstacle for the
        margin is moved to the nearest usable cell, like the start; the
        returned path then ends on that cell rather than on goal_ij.

        Args:
            start_ij: Start cell (i, j)
            goal_ij: Goal cell (i, j)
            traversable: Boolean (H, W) mask, True where the robot may drive

        Returns:
            Cells [(i, j), ...] from start to goal, or None if no path exists.
        """
        rows, cols = traversable.shape
        gi, gj = goal_ij
        if not (0 <= gi < rows and 0 <= gj < cols) or not traversable[gi, gj]:
            logger.warning("[A*] Invalid goal position: %s", goal_ij)
            return None

        usable = self.usable_mask(traversable)

        if not self.is_valid(goal_ij, usable):
            nearest = self.nearest_valid(goal_ij, usable)
            if nearest is None:
                logger.warning("[A*] Goal %s has no clear cell within %d cells", goal_ij, self.start_search_radius)
                return None
            logger.info("[A*] Goal %s too close to obstacles, using %s", goal_ij, nearest)
            goal_ij = nearest

        if not self.is_valid(start_ij, usable):
            logger.info("[A*] Start %s is invalid. Searching for nearest valid...", start_ij)
            nearest = self.nearest_valid(start_ij, usable)
            if nearest is None:
                logger.warning("[A*] Could not find valid start near %s", start_ij)
                return None
            start_ij = nearest

        path = self._search(start_ij, goal_ij, usable)
        if path is None:
            logger.warning("[A*] No path from %s to %s", start_ij, goal_ij)
        return path

    def usable_mask(self, traversable: np.ndarray) -> np.ndarray:
        """Cells whose whole margin window is traversable. Off-grid cells do not block."""
        usable = np.asarray(traversable, dtype=bool)
        m = self.margin_cells
        if not m:
            return usable
        rows, cols = usable.shape
        padded = np.pad(usable, m, mode="constant", constant_values=True)
        out = np.ones_like(usable)
        for di in range(2 * m + 1):
            for dj in range(2 * m + 1):
                out &= padded[di:di + rows, dj:dj + cols]
        return out

    def nearest_valid(self, pos: Cell, usable: np.ndarray) -> Optional[Cell]:
        """Breadth-first search for the closest usable cell within start_search_radius."""
        r = self.start_search_radius
        queue = deque([pos])
        seen = {pos}
        while queue:
            cell = queue.popleft()
            if self.is_valid(cell, usable):
                return cell
            for di, dj in STRAIGHT_MOVES + DIAGONAL_MOVES:
                nxt = (cell[0] + di, cell[1] + dj)
                if nxt in seen or abs(nxt[0] - pos[0]) > r or abs(nxt[1] - pos[1]) > r:
                    continue
                seen.add(nxt)
                queue.append(nxt)
        return None

    def _search(self, start: Cell, goal: Cell, usable: np.ndarray) -> Optional[List[Cell]]:
        # heap entries: (f, insertion order, cell); order breaks f ties FIFO
        tie = count()
        frontier = [(self._heuristic(start, goal), next(tie), start)]
        came_from: Dict[Cell, Optional[Cell]] = {start: None}
        cost = {start: 0.0}
        done = set()

        while frontier:
            _, _, cell = heapq.heappop(frontier)
            if cell == goal:
                return self._reconstruct_path(came_from, goal)
            if cell in done:
                continue
            done.add(cell)

            for step, nxt in self._neighbours(cell, usable):
                if nxt in done:
                    continue
                g = cost[cell] + step
                if g >= cost.get(nxt, math.inf):
                    continue
                cost[nxt] = g
                came_from[nxt] = cell
                heapq.heappush(frontier, (g + self._heuristic(nxt, goal), next(tie), nxt))

        return None

    def _neighbours(self, cell: Cell, usable: np.ndarray):
        i, j = cell
        for di, dj in self.moves:
            nxt = (i + di, j + dj)
            if not self.is_valid(nxt, usable):
                continue
            if di and dj:
                # no corner cutting
                if not (self.is_valid((i + di, j), usable) and self.is_valid((i, j + dj), usable)):
                    continue
                yield math.sqrt(2.0), nxt
            else:
                yield 1.0, nxt

    @staticmethod
    def is_valid(pos: Cell, usable: np.ndarray) -> bool:
        i, j = pos
        rows, cols = usable.shape
        return 0 <= i < rows and 0 <= j < cols and bool(usable[i, j])

    def _heuristic(self, pos: Cell, goal: Cell) -> float:
        di = abs(pos[0] - goal[0])
        dj = abs(pos[1] - goal[1])
        if self.heuristic_type == "manhattan":
            return float(di + dj)
        return math.hypot(di, dj)

    @staticmethod
    def _reconstruct_path(came_from: Dict[Cell, Optional[Cell]], goal: Cell) -> List[Cell]:
        path = [goal]
        while came_from[path[-1]] is not None:
            path.append(came_from[path[-1]])
        path.reverse()
        return path


def compute_path_length(path: Sequence[Tuple[float, float]]) -> float:
    """Total Euclidean length of a waypoint list, in the units of the waypoints."""
    if len(path) < 2:
        return 0.0
    pts = np.asarray(path, dtype=float)
    return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())


def simplify_path(
    path: Sequence[Tuple[float, float]],
    tolerance: float = 0.05
) -> List[Tuple[float, float]]:
    """
    Ramer-Douglas-Peucker simplification. End points are always kept.

    Args:
        path: Original path
        tolerance: Maximum deviation [meters]
    """
    path = list(path)
    if len(path) < 3:
        return path

    pts = np.asarray(path, dtype=float)
    start, end = pts[0], pts[-1]
    seg = end - start
    seg_len = float(np.hypot(seg[0], seg[1]))
    inner = pts[1:-1] - start

    if seg_len == 0.0:
        dists = np.hypot(inner[:, 0], inner[:, 1])
    else:
        dists = np.abs(seg[0] * inner[:, 1] - seg[1] * inner[:, 0]) / seg_len

    k = int(np.argmax(dists)) + 1
    if dists[k - 1] > tolerance:
        left = simplify_path(path[:k + 1], tolerance)
        right = simplify_path(path[k:], tolerance)
        return left[:-1] + right
    return [path[0], path[-1]]
