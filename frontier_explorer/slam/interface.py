# slam/interface.py
"""
Boundary between the exploration core and the robot-side collaborators.

The mapper, localization, motor transport and planner search all live
outside this package; the engine only talks to them through the small
protocols below. SLAMInterface is an in-memory stand-in for the mapper and
pose source, handy for demos and tests.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, List, NamedTuple, Optional, Protocol, Sequence, Tuple

import numpy as np

from frontier_explorer.errors import StaleStateWarning
from frontier_explorer.slam.occupancy import OccupancyGridSnapshot


XY = Tuple[float, float]
Path = Tuple[XY, ...]


class Pose2D(NamedTuple):
    """Robot pose in the world frame (meters, radians)."""

    x: float
    y: float
    theta: float

    @property
    def xy(self) -> XY:
        return (self.x, self.y)


class GridSource(Protocol):
    def get_snapshot(self) -> OccupancyGridSnapshot:
        ...


class PoseSource(Protocol):
    def get_pose(self) -> Optional[Pose2D]:
        ...


class ActuationSink(Protocol):
    def move_robot(self, connection: Any, linear: float, angular: float) -> None:
        ...


class MapUpdateSink(Protocol):
    def update_slam(self, path: Sequence[XY]) -> None:
        ...


class SLAMInterface:
    """
    In-memory grid + pose source.

    Grid and pose are replaced wholesale with set_snapshot()/set_pose();
    update_slam() records each call and forwards it to an optional hook so a
    simulated mapper can reveal cells as the robot moves.
    """

    def __init__(
        self,
        snapshot: Optional[OccupancyGridSnapshot] = None,
        pose: Optional[Pose2D] = None,
        on_update: Optional[Callable[[Sequence[XY]], None]] = None,
    ) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot
        self._pose = pose
        self._on_update = on_update
        self.update_calls: List[Path] = []

    def set_snapshot(self, snapshot: OccupancyGridSnapshot) -> None:
        with self._lock:
            self._snapshot = snapshot

    def set_pose(self, pose) -> None:
        with self._lock:
            self._pose = None if pose is None else Pose2D(*(float(v) for v in pose))

    def get_snapshot(self) -> OccupancyGridSnapshot:
        with self._lock:
            snapshot = self._snapshot
        if snapshot is None:
            raise StaleStateWarning("no occupancy grid published yet")
        return snapshot

    def get_pose(self) -> Pose2D:
        with self._lock:
            pose = self._pose
        if pose is None:
            raise StaleStateWarning("no pose published yet")
        return pose

    def update_slam(self, path: Sequence[XY]) -> None:
        self.update_calls.append(tuple(path))
        if self._on_update is not None:
            self._on_update(path)


def as_pose(value) -> Pose2D:
    """Coerce an (x, y, theta) sequence or array into a Pose2D."""
    if isinstance(value, Pose2D):
        return value
    if value is None:
        raise StaleStateWarning("pose source returned no pose")
    try:
        arr = np.asarray(value, dtype=float).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise StaleStateWarning(f"invalid pose {value!r}") from exc
    if arr.size != 3 or not np.all(np.isfinite(arr)):
        raise StaleStateWarning(f"invalid pose {value!r}")
    return Pose2D(float(arr[0]), float(arr[1]), float(arr[2]))
