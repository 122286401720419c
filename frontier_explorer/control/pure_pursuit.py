## PURE PURSUIT PATH TRACKER
from typing import NamedTuple, Optional, Sequence, Tuple
import logging
import math

from frontier_explorer.errors import ConfigurationError
from frontier_explorer.explore.utils import distance, wrap_angle

logger = logging.getLogger(__name__)


class ControlCommand(NamedTuple):
    linear: float
    angular: float
    goal_reached: bool


class PurePursuitController:
    """
    Geometric path tracker for a differential-drive robot.

    Each call to track() aims at the point where the path leaves a circle of
    one lookahead distance around the robot, steers along the arc through it
    and reports goal_reached once the final waypoint is closer than the
    lookahead.

    Linear velocity is always the desired velocity, scaled down only inside
    slowdown_distance of the goal. Turning on the spot for large heading
    errors is opt-in through rotate_in_place_angle.
    """

    def __init__(
        self,
        lookahead_distance: float = 0.5,
        desired_linear_velocity: float = 0.3,
        max_angular_velocity: float = 1.0,
        slowdown_distance: float = 0.0,
        min_linear_velocity: float = 0.05,
        rotate_in_place_angle: Optional[float] = None,
    ):
        if lookahead_distance <= 0:
            raise ConfigurationError(f"lookahead distance must be positive, got {lookahead_distance}")
        if desired_linear_velocity <= 0:
            raise ConfigurationError(f"desired linear velocity must be positive, got {desired_linear_velocity}")
        if max_angular_velocity <= 0:
            raise ConfigurationError(f"max angular velocity must be positive, got {max_angular_velocity}")
        if slowdown_distance < 0 or min_linear_velocity < 0:
            raise ConfigurationError("slowdown distance and min linear velocity must be non-negative")
        if rotate_in_place_angle is not None and not 0 < rotate_in_place_angle <= math.pi:
            raise ConfigurationError(f"rotate-in-place angle must lie in (0, pi], got {rotate_in_place_angle}")

        self.lookahead_distance = lookahead_distance
        self.desired_linear_velocity = desired_linear_velocity
        self.max_angular_velocity = max_angular_velocity
        self.slowdown_distance = slowdown_distance
        self.min_linear_velocity = min(min_linear_velocity, desired_linear_velocity)
        # heading error beyond which the robot turns on the spot (None: never)
        self.rotate_in_place_angle = rotate_in_place_angle

        self.waypoints: Tuple[Tuple[float, float], ...] = ()
        self._index = 0

    def reset(self, path: Sequence[Tuple[float, float]] = ()) -> None:
        self.waypoints = tuple((float(p[0]), float(p[1])) for p in path)
        self._index = 0

    @property
    def matched_index(self) -> int:
        return self._index

    def track(self, path: Sequence[Tuple[float, float]], pose) -> ControlCommand:
        """
        Compute (linear, angular, goal_reached) for the current pose.

        Args:
            path: waypoints [(x, y), ...]; a new path resets the tracker.
            pose: (x, y, theta) in the same frame as the path.
        """
        if path is not self.waypoints and tuple(tuple(p) for p in path) != self.waypoints:
            self.reset(path)
        if not self.waypoints:
            raise ValueError("pure pursuit needs a non-empty path")

        x, y, th = pose
        position = (x, y)

        if len(self.waypoints) == 1:
            return ControlCommand(0.0, 0.0, True)

        dist_goal = distance(position, self.waypoints[-1])
        goal_reached = dist_goal < self.lookahead_distance

        tx, ty = self._lookahead_point(position)
        dx, dy = tx - x, ty - y
        d = math.hypot(dx, dy)

        v = self.desired_linear_velocity
        if self.slowdown_distance > 0 and dist_goal < self.slowdown_distance:
            v = max(self.min_linear_velocity, v * dist_goal / self.slowdown_distance)

        if d < 1e-9:
            return ControlCommand(v, 0.0, goal_reached)

        alpha = wrap_angle(math.atan2(dy, dx) - th)

        if self.rotate_in_place_angle is not None and abs(alpha) > self.rotate_in_place_angle:
            w = math.copysign(self.max_angular_velocity, alpha)
            logger.debug("[PurePursuit] alpha=%.2f -> turn in place w=%.2f", alpha, w)
            return ControlCommand(0.0, w, goal_reached)

        curvature = 2.0 * math.sin(alpha) / d
        w = v * curvature
        w = max(-self.max_angular_velocity, min(self.max_angular_velocity, w))

        logger.debug(
            "[PurePursuit] Pose=(%.2f,%.2f,%.2f) Target=(%.2f,%.2f) DistGoal=%.2f -> v=%.2f w=%.2f",
            x, y, th, tx, ty, dist_goal, v, w,
        )
        return ControlCommand(v, w, goal_reached)

    def _lookahead_point(self, position: Tuple[float, float]) -> Tuple[float, float]:
        wps = self.waypoints
        L = self.lookahead_distance

        # Nearest waypoint, searched forward only so the tracker never backtracks
        nearest = self._index
        best = distance(position, wps[nearest])
        for k in range(self._index + 1, len(wps)):
            dk = distance(position, wps[k])
            if dk < best:
                best, nearest = dk, k
        self._index = nearest

        if distance(position, wps[-1]) < L:
            return wps[-1]

        # First segment leaving the lookahead circle; aim at its exit point
        for k in range(max(nearest - 1, 0), len(wps) - 1):
            a, b = wps[k], wps[k + 1]
            if distance(position, b) < L:
                continue
            t = _circle_exit(a, b, position, L)
            if t is not None:
                return (a[0] + t * (b[0] - a[0]), a[1] + t * (b[1] - a[1]))

        # Off the path by more than L: head for the next waypoint
        return wps[min(nearest + 1, len(wps) - 1)]


def _circle_exit(a, b, center, radius) -> Optional[float]:
    """Largest t in [0, 1] with |a + t (b - a) - center| = radius, or None."""
    dx, dy = b[0] - a[0], b[1] - a[1]
    fx, fy = a[0] - center[0], a[1] - center[1]
    qa = dx * dx + dy * dy
    if qa == 0.0:
        return None
    qb = 2.0 * (fx * dx + fy * dy)
    qc = fx * fx + fy * fy - radius * radius
    disc = qb * qb - 4.0 * qa * qc
    if disc < 0.0:
        return None
    t = (-qb + math.sqrt(disc)) / (2.0 * qa)
    if 0.0 <= t <= 1.0:
        return t
    return None
