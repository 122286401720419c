import sys
import logging
from contextlib import nullcontext
from pathlib import Path

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from frontier_explorer.configs.config_loader import load_explorer_config
from frontier_explorer.eval.logger import CsvLogger
from frontier_explorer.eval.metrics import coverage_percent, entropy_proxy
from frontier_explorer.explore.engine import ExplorationEngine, ExplorationState
from frontier_explorer.models.motion import sample_motion_velocity
from frontier_explorer.slam.interface import Pose2D
from frontier_explorer.slam.occupancy import GridSpec, OccupancyGrid

# one free observation takes a cell below the 0.2 free threshold (P ~ 0.12)
DEMO_L_FREE = -2.0


class MockWorld:
    # Perfect-localization stand-in for the simulator + mapper: the robot
    # integrates its commands, and every update_slam() marks the true cells
    # inside sensor range as free or occupied.

    def __init__(self, occupied: np.ndarray, spec: GridSpec, start, sensor_range=1.0, dt=0.1):
        self.occupied = occupied
        self.grid = OccupancyGrid(spec)
        self.pose = np.array(start, dtype=float)
        self.sensor_range = sensor_range
        self.dt = dt
        self.collisions = 0

        rows, cols = occupied.shape
        ii, jj = np.mgrid[0:rows, 0:cols]
        self._x = spec.origin_x + jj * spec.resolution
        self._y = spec.origin_y + ii * spec.resolution
        self.sense()

    def get_snapshot(self):
        return self.grid.snapshot()

    def get_pose(self):
        return Pose2D(*self.pose)

    def move_robot(self, connection, linear, angular):
        new_pose = sample_motion_velocity(self.pose, (linear, angular), self.dt)
        x, y = self.pose[0], self.pose[1]
        nx, ny = new_pose[0], new_pose[1]
        if self.blocked(nx, ny):
            self.collisions += 1
            # slide along the wall when one axis is still open
            if not self.blocked(nx, y):
                ny = y
            elif not self.blocked(x, ny):
                nx = x
            else:
                nx, ny = x, y
        self.pose = np.array([nx, ny, new_pose[2]])

    def blocked(self, x, y):
        spec = self.grid.spec
        i = int(np.floor((y - spec.origin_y) / spec.resolution))
        j = int(np.floor((x - spec.origin_x) / spec.resolution))
        return not self.grid.in_bounds(i, j) or bool(self.occupied[i, j])

    def update_slam(self, path):
        self.sense()

    def sense(self):
        in_range = np.hypot(self._x - self.pose[0], self._y - self.pose[1]) <= self.sensor_range
        self.grid.update_cells(in_range & ~self.occupied, in_range & self.occupied)


def build_world(size=40):
    occ = np.zeros((size, size), dtype=bool)
    occ[0, :] = occ[-1, :] = occ[:, 0] = occ[:, -1] = True
    occ[20, 1:14] = True    # wall with an 8-cell doorway
    occ[20, 22:39] = True
    occ[8:14, 25:28] = True  # pillar
    return occ


def run_demo(profile="simulation", max_cycles=300, log_path=None, sensor_range=1.2):
    """Explore the mock world until no frontier is left or max_cycles run out."""
    config = load_explorer_config(profile)
    occupied = build_world()
    rows, cols = occupied.shape
    spec = GridSpec(resolution=0.1, width=cols, height=rows, l_free=DEMO_L_FREE)
    world = MockWorld(occupied, spec, start=(0.5, 0.5, 0.0), sensor_range=sensor_range)

    log_ctx = CsvLogger(log_path) if log_path else nullcontext()
    with log_ctx as log:
        engine = ExplorationEngine(
            grid_source=world,
            pose_source=world,
            actuator=world,
            map_updater=world,
            config=config,
            periodic=False,
            event_log=log,
            sleep=lambda s: None,
        )
        engine.start_exploration()
        for _ in range(max_cycles):
            if engine.tick() is ExplorationState.TERMINATED:
                break
        engine.stop_exploration()

    return engine, world


def main(profile="simulation"):
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    engine, world = run_demo(profile, log_path="eval_logs/mock_frontier_demo.csv")

    snapshot = world.get_snapshot()
    print("status:", engine.status())
    print("coverage%", round(coverage_percent(snapshot), 1), "entropy", round(entropy_proxy(snapshot), 3))


if __name__ == "__main__":
    main(sys.argv[1] if len(sys.argv) > 1 else "simulation")
