from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np

from frontier_explorer.errors import ConfigurationError
from frontier_explorer.explore.utils import ij_to_xy


# Thresholds used by the mapper's probability map when none are given.
DEFAULT_FREE_THRESHOLD = 0.2
DEFAULT_OCCUPIED_THRESHOLD = 0.65


@dataclass(frozen=True, eq=False)
class OccupancyGridSnapshot:
    """
    Read-only view of the mapper's occupancy grid at one instant.

    Attributes:
        probabilities: (rows, cols) array of P(occupied) in [0, 1].
        free_threshold: cells strictly below this are FREE.
        occupied_threshold: cells strictly above this are OCCUPIED.
        resolution: meters per cell.
        origin_xy: world coordinates of cell (0, 0).

    Cell (row, col) maps to world x = col * resolution + origin_x,
    y = row * resolution + origin_y.
    """

    probabilities: np.ndarray
    free_threshold: float = DEFAULT_FREE_THRESHOLD
    occupied_threshold: float = DEFAULT_OCCUPIED_THRESHOLD
    resolution: float = 0.05
    origin_xy: Tuple[float, float] = (0.0, 0.0)

    def __post_init__(self) -> None:
        probs = np.array(self.probabilities, dtype=float)
        if probs.ndim != 2:
            raise ConfigurationError(
                f"occupancy matrix must be 2-D, got shape {probs.shape}"
            )
        if probs.size and (not np.all(np.isfinite(probs))
                           or probs.min() < 0.0 or probs.max() > 1.0):
            raise ConfigurationError("occupancy probabilities must lie in [0, 1]")
        if not self.free_threshold < self.occupied_threshold:
            raise ConfigurationError(
                f"free threshold {self.free_threshold} must be below "
                f"occupied threshold {self.occupied_threshold}"
            )
        if not self.resolution > 0:
            raise ConfigurationError(f"resolution must be positive, got {self.resolution}")

        probs.setflags(write=False)
        # frozen dataclass, so go through object.__setattr__
        object.__setattr__(self, "probabilities", probs)
        object.__setattr__(
            self, "origin_xy", (float(self.origin_xy[0]), float(self.origin_xy[1]))
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.probabilities.shape

    def in_bounds(self, i: int, j: int) -> bool:
        rows, cols = self.shape
        return 0 <= i < rows and 0 <= j < cols

    def grid_to_world(self, i: int, j: int) -> Tuple[float, float]:
        x, y = ij_to_xy(i, j, self.origin_xy, self.resolution)
        return float(x), float(y)

    def world_to_grid(self, x: float, y: float) -> Tuple[int, int]:
        # small epsilon so grid_to_world -> world_to_grid is the identity
        j = int(np.floor((x - self.origin_xy[0]) / self.resolution + 1e-9))
        i = int(np.floor((y - self.origin_xy[1]) / self.resolution + 1e-9))
        return i, j


@dataclass
class GridSpec:

    # Geometry and log-odds parameters of the occupancy grid.
    # The grid is indexed row-major as (i, j) with shape (height, width).

    resolution: float  # meters per cell
    width: int
    height: int
    origin_x: float = 0.0
    origin_y: float = 0.0

    # Log-odds parameters
    l_occ: float = 0.85
    l_free: float = -0.4
    l_min: float = -4.0
    l_max: float = 4.0
    l0: float = 0.0  # prior, P = 0.5 -> UNKNOWN

    free_threshold: float = DEFAULT_FREE_THRESHOLD
    occupied_threshold: float = DEFAULT_OCCUPIED_THRESHOLD


class OccupancyGrid:

    # Mutable log-odds grid as kept by a mapper. The exploration core only
    # ever sees it through snapshot().

    def __init__(self, spec: GridSpec) -> None:
        if spec.resolution <= 0:
            raise ConfigurationError(f"resolution must be positive, got {spec.resolution}")
        if spec.width < 0 or spec.height < 0:
            raise ConfigurationError("grid dimensions must be non-negative")
        self.spec = spec
        self.log_odds = np.full(
            (spec.height, spec.width), fill_value=spec.l0, dtype=np.float32
        )

    def clear(self) -> None:
        self.log_odds.fill(self.spec.l0)

    def in_bounds(self, i: int, j: int) -> bool:
        return 0 <= i < self.spec.height and 0 <= j < self.spec.width

    def _apply_delta(self, i: int, j: int, delta: float) -> None:
        if not self.in_bounds(i, j):
            return
        self.log_odds[i, j] = float(
            np.clip(self.log_odds[i, j] + delta, self.spec.l_min, self.spec.l_max)
        )

    def mark_free(self, i: int, j: int) -> None:
        self._apply_delta(i, j, self.spec.l_free)

    def mark_occupied(self, i: int, j: int) -> None:
        self._apply_delta(i, j, self.spec.l_occ)

    def update_cells(self, free_mask: np.ndarray, occupied_mask: np.ndarray) -> None:
        # One scan worth of observations; a cell in both masks gets both updates.
        if free_mask.shape != self.log_odds.shape or occupied_mask.shape != self.log_odds.shape:
            raise ValueError(
                f"masks must have shape {self.log_odds.shape}, got {free_mask.shape} and {occupied_mask.shape}"
            )
        delta = np.where(free_mask, self.spec.l_free, 0.0) + np.where(occupied_mask, self.spec.l_occ, 0.0)
        self.log_odds[:] = np.clip(self.log_odds + delta, self.spec.l_min, self.spec.l_max)

    def probabilities(self) -> np.ndarray:
        # Logistic transform p = 1 / (1 + exp(-l)).
        return 1.0 / (1.0 + np.exp(-self.log_odds.astype(float)))

    def snapshot(self) -> OccupancyGridSnapshot:
        return OccupancyGridSnapshot(
            probabilities=self.probabilities(),
            free_threshold=self.spec.free_threshold,
            occupied_threshold=self.spec.occupied_threshold,
            resolution=self.spec.resolution,
            origin_xy=(self.spec.origin_x, self.spec.origin_y),
        )
