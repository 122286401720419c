from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import List, Optional, Tuple

import numpy as np

from frontier_explorer.slam.occupancy import OccupancyGridSnapshot


class CellClass(IntEnum):
    FREE = 0
    OCCUPIED = 1
    UNKNOWN = -1


# 8-connected neighbour offsets, row-major order
NEIGHBORS_8 = [(-1, -1), (-1, 0), (-1, 1),
               (0, -1),           (0, 1),
               (1, -1),  (1, 0),  (1, 1)]


@dataclass
class Frontier:
    """Represents a connected cluster of frontier cells."""
    label: int                                  # component label, 1-based
    cells: List[Tuple[int, int]]                # (row, col), row-major order
    points: List[Tuple[float, float]] = field(default_factory=list)  # world (x, y), same order

    @property
    def size(self) -> int:
        return len(self.cells)

    @property
    def goal(self) -> Tuple[float, float]:
        """Exploration goal: first world point of the frontier."""
        return self.points[0]

    @property
    def centroid(self) -> Tuple[float, float]:
        xs, ys = zip(*self.points)
        return (sum(xs) / len(xs), sum(ys) / len(ys))


def classify(snapshot: OccupancyGridSnapshot) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Split the occupancy grid into (free, occupied, unknown) boolean masks.

    free = p < free_threshold, occupied = p > occupied_threshold,
    unknown = neither. Every cell lands in exactly one mask.
    """
    probs = snapshot.probabilities
    free = probs < snapshot.free_threshold
    occupied = probs > snapshot.occupied_threshold
    unknown = ~(free | occupied)
    return free, occupied, unknown


def classify_cells(snapshot: OccupancyGridSnapshot) -> np.ndarray:
    """Same classification as classify(), as an int8 array of CellClass values."""
    free, occupied, _ = classify(snapshot)
    codes = np.full(snapshot.shape, int(CellClass.UNKNOWN), dtype=np.int8)
    codes[free] = int(CellClass.FREE)
    codes[occupied] = int(CellClass.OCCUPIED)
    return codes


def unknown_neighbor_count(unknown: np.ndarray) -> np.ndarray:
    """
    Count UNKNOWN cells among the 8 neighbours of every cell.

    Out-of-grid neighbours count as not unknown (zero padding).
    """
    padded = np.pad(unknown.astype(np.int32), pad_width=1, mode='constant', constant_values=0)
    rows, cols = unknown.shape
    count = np.zeros((rows, cols), dtype=np.int32)
    for di, dj in NEIGHBORS_8:
        count += padded[1 + di:1 + di + rows, 1 + dj:1 + dj + cols]
    return count


def frontier_mask(snapshot: OccupancyGridSnapshot) -> np.ndarray:
    """Boolean mask of cells that are FREE and have at least one UNKNOWN 8-neighbour."""
    free, _, unknown = classify(snapshot)
    return free & (unknown_neighbor_count(unknown) > 0)


def label_frontiers(mask: np.ndarray) -> Tuple[np.ndarray, int]:
    """
    Label 8-connected components of a boolean mask.

    Seeds are taken in row-major scan order, so label 1 is the component
    holding the first set cell in that order, label 2 the next one, etc.

    Returns:
        (labels, count): int32 array (0 = background) and number of components.
    """
    rows, cols = mask.shape
    labels = np.zeros((rows, cols), dtype=np.int32)
    count = 0

    for i, j in np.argwhere(mask):
        if labels[i, j]:
            continue
        count += 1
        labels[i, j] = count
        queue = deque([(i, j)])
        while queue:
            ci, cj = queue.popleft()
            for di, dj in NEIGHBORS_8:
                ni, nj = ci + di, cj + dj
                if 0 <= ni < rows and 0 <= nj < cols and mask[ni, nj] and not labels[ni, nj]:
                    labels[ni, nj] = count
                    queue.append((ni, nj))

    return labels, count


def _frontier_from_label(
    snapshot: OccupancyGridSnapshot, labels: np.ndarray, label: int
) -> Frontier:
    cells = [(int(i), int(j)) for i, j in np.argwhere(labels == label)]
    points = [snapshot.grid_to_world(i, j) for i, j in cells]
    return Frontier(label=label, cells=cells, points=points)


def extract_frontiers(snapshot: OccupancyGridSnapshot, min_size: int = 1) -> List[Frontier]:
    """
    All frontiers of the snapshot, in label order.

    Args:
        snapshot: occupancy grid snapshot.
        min_size: discard frontiers with fewer cells than this.
    """
    labels, count = label_frontiers(frontier_mask(snapshot))
    frontiers = []
    for label in range(1, count + 1):
        f = _frontier_from_label(snapshot, labels, label)
        if f.size >= min_size:
            frontiers.append(f)
    return frontiers


def detect_largest_frontier(
    snapshot: OccupancyGridSnapshot, min_size: int = 1
) -> Optional[Frontier]:
    """
    Return the frontier with the most cells, or None when there is none.

    Labels are scanned in ascending order with a strict '>' comparison, so
    among equally large frontiers the lowest label wins.
    """
    labels, count = label_frontiers(frontier_mask(snapshot))
    if count == 0:
        return None

    sizes = np.bincount(labels.ravel(), minlength=count + 1)
    largest_size = 0
    largest_label = 0
    for label in range(1, count + 1):
        if sizes[label] > largest_size:
            largest_size = int(sizes[label])
            largest_label = label

    if largest_size < max(1, min_size):
        return None
    return _frontier_from_label(snapshot, labels, largest_label)
