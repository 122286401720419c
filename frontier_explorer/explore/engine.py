# explore/engine.py

"""
Frontier exploration state machine.

    IDLE --start--> DETECTING --frontier--> PLANNING --plan--> FOLLOWING
                       ^   |                   |                  |
                       |   +--no frontier--> TERMINATED <--stop---+ (any state)
                       +------ plan failed ----+                  |
                       +------ goal reached / path exhausted -----+

Each trigger runs one cycle through tick(): detect the largest frontier on
the latest grid, plan to its first cell, then block in the following loop
until the goal is reached, the loop gives up, or exploration is cancelled.
"""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, NamedTuple, Optional, Tuple

from frontier_explorer.configs.config_loader import ExplorerConfig
from frontier_explorer.control.path_planner import compute_path_length
from frontier_explorer.control.pure_pursuit import PurePursuitController
from frontier_explorer.errors import ConfigurationError, PlanningFailure, StaleStateWarning
from frontier_explorer.eval.logger import CsvLogger
from frontier_explorer.eval.metrics import coverage_percent, entropy_proxy
from frontier_explorer.explore.frontiers import Frontier, detect_largest_frontier
from frontier_explorer.explore.planner import PlannerFactory, ensure_path, grid_planner_factory
from frontier_explorer.explore.scheduler import CancellationToken, PeriodicTrigger
from frontier_explorer.slam.interface import (
    XY,
    ActuationSink,
    GridSource,
    MapUpdateSink,
    Path,
    Pose2D,
    PoseSource,
    as_pose,
)
from frontier_explorer.slam.occupancy import OccupancyGridSnapshot

logger = logging.getLogger(__name__)


class ExplorationState(Enum):
    IDLE = "idle"
    DETECTING = "detecting"
    PLANNING = "planning"
    FOLLOWING = "following"
    TERMINATED = "terminated"


class ExplorationEvent(Enum):
    START = "start"
    STOP = "stop"
    FRONTIER_FOUND = "frontier_found"
    NO_FRONTIER = "no_frontier"
    GRID_UNAVAILABLE = "grid_unavailable"
    PLAN_READY = "plan_ready"
    PLAN_FAILED = "plan_failed"
    GOAL_REACHED = "goal_reached"
    PATH_EXHAUSTED = "path_exhausted"
    CANCELLED = "cancelled"
    FAULT = "fault"


class Effect(Enum):
    START_TRIGGER = "start_trigger"
    STOP_TRIGGER = "stop_trigger"


class Transition(NamedTuple):
    state: ExplorationState
    effects: Tuple[Effect, ...]


S, E = ExplorationState, ExplorationEvent

_TRANSITIONS: Dict[Tuple[ExplorationState, ExplorationEvent], Transition] = {
    (S.IDLE, E.START): Transition(S.DETECTING, (Effect.START_TRIGGER,)),
    (S.TERMINATED, E.START): Transition(S.DETECTING, (Effect.START_TRIGGER,)),
    (S.DETECTING, E.FRONTIER_FOUND): Transition(S.PLANNING, ()),
    (S.DETECTING, E.NO_FRONTIER): Transition(S.TERMINATED, (Effect.STOP_TRIGGER,)),
    (S.DETECTING, E.GRID_UNAVAILABLE): Transition(S.DETECTING, ()),
    (S.DETECTING, E.FAULT): Transition(S.DETECTING, ()),
    (S.PLANNING, E.PLAN_READY): Transition(S.FOLLOWING, ()),
    (S.PLANNING, E.PLAN_FAILED): Transition(S.DETECTING, ()),
    (S.PLANNING, E.FAULT): Transition(S.DETECTING, ()),
    (S.FOLLOWING, E.GOAL_REACHED): Transition(S.DETECTING, ()),
    (S.FOLLOWING, E.PATH_EXHAUSTED): Transition(S.DETECTING, ()),
    (S.FOLLOWING, E.CANCELLED): Transition(S.TERMINATED, (Effect.STOP_TRIGGER,)),
    (S.FOLLOWING, E.FAULT): Transition(S.DETECTING, ()),
}

del S, E


def transition(state: ExplorationState, event: ExplorationEvent) -> Transition:
    """
    Pure transition function: (state, event) -> (new state, effects).

    STOP is accepted from every running state. Any other pair missing from
    the table is a programming error and raises ValueError.
    """
    if event is ExplorationEvent.STOP and state is not ExplorationState.IDLE:
        return Transition(ExplorationState.TERMINATED, (Effect.STOP_TRIGGER,))
    try:
        return _TRANSITIONS[(state, event)]
    except KeyError:
        raise ValueError(f"no transition from {state.name} on {event.name}") from None


class ExplorationEngine:
    """
    Drives frontier exploration for one robot.

    Collaborators are injected: grid and pose sources, an actuation sink
    (move_robot), a map-update sink (update_slam) and a planner factory that
    builds a fresh planner from each grid snapshot. With periodic=True the
    engine owns a PeriodicTrigger that calls tick() every
    config.trigger_period_s; with periodic=False the caller drives tick().
    """

    def __init__(
        self,
        grid_source: GridSource,
        pose_source: PoseSource,
        actuator: ActuationSink,
        map_updater: MapUpdateSink,
        planner_factory: Optional[PlannerFactory] = None,
        controller: Optional[PurePursuitController] = None,
        config: Optional[ExplorerConfig] = None,
        connection: Any = None,
        periodic: bool = True,
        event_log: Optional[CsvLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        for name, collaborator in (
            ("grid_source", grid_source),
            ("pose_source", pose_source),
            ("actuator", actuator),
            ("map_updater", map_updater),
        ):
            if collaborator is None:
                raise ConfigurationError(f"{name} is required")

        self.config = (config or ExplorerConfig()).validate()
        cfg = self.config

        self.grid_source = grid_source
        self.pose_source = pose_source
        self.actuator = actuator
        self.map_updater = map_updater
        self.connection = connection
        self.event_log = event_log
        self._sleep = sleep

        self.planner_factory = planner_factory or grid_planner_factory(
            allow_unknown=cfg.allow_unknown,
            allow_diagonal=cfg.allow_diagonal,
            margin_cells=cfg.margin_cells,
            simplify_tolerance=cfg.simplify_tolerance,
        )
        self.controller = controller or PurePursuitController(
            lookahead_distance=cfg.lookahead_distance,
            desired_linear_velocity=cfg.desired_linear_velocity,
            max_angular_velocity=cfg.max_angular_velocity,
            slowdown_distance=cfg.slowdown_distance,
            min_linear_velocity=cfg.min_linear_velocity,
            rotate_in_place_angle=cfg.rotate_in_place_angle,
        )

        self.trigger: Optional[PeriodicTrigger] = None
        if periodic:
            self.trigger = PeriodicTrigger(
                self.tick,
                period_s=cfg.trigger_period_s,
                max_pending=cfg.max_pending_ticks,
                policy=cfg.overflow_policy,
            )

        self._lock = threading.RLock()
        self._token = CancellationToken()
        self._state = ExplorationState.IDLE

        # Observable status
        self.last_event = "Idle"
        self.goal_xy: Optional[XY] = None
        self.largest_frontier: Optional[Frontier] = None
        self.current_path: Optional[Path] = None
        self.robot_pose: Optional[Pose2D] = None
        self.cycles = 0
        self.goals_reached = 0
        self.planning_failures = 0

    # ---------- control surface ----------

    @property
    def state(self) -> ExplorationState:
        return self._state

    @property
    def is_exploring(self) -> bool:
        return not self._token.cancelled

    def start_exploration(self) -> None:
        """Begin (or resume after termination) exploring. No-op while running."""
        with self._lock:
            if self.is_exploring:
                return
            self._token = CancellationToken()
            self._token.reset()
            effects = self._apply_transition(
                ExplorationEvent.START, "Exploration started asynchronously"
            )
        self._run_effects(effects)

    def stop_exploration(self) -> None:
        """Cancel exploration. Takes effect at the next poll point. No-op when stopped."""
        with self._lock:
            if not self.is_exploring:
                return
            self._token.cancel()
            effects = self._apply_transition(ExplorationEvent.STOP, "Exploration stopped")
        self._run_effects(effects)

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self._state.value,
                "is_exploring": self.is_exploring,
                "last_event": self.last_event,
                "goal_xy": self.goal_xy,
                "frontier_size": self.largest_frontier.size if self.largest_frontier else 0,
                "cycles": self.cycles,
                "goals_reached": self.goals_reached,
                "planning_failures": self.planning_failures,
            }

    # ---------- periodic entry point ----------

    def tick(self) -> ExplorationState:
        """
        Run one exploration cycle. Called by the trigger (or directly by the
        caller when periodic=False). Never raises for in-loop failures.
        """
        token = self._token
        if token.cancelled:
            return self._state
        if self._state is not ExplorationState.DETECTING:
            logger.debug("[Explorer] tick ignored in state %s", self._state.name)
            return self._state

        self.cycles += 1
        snapshot = None
        try:
            snapshot = self._run_cycle(token)
        except Exception as exc:
            logger.exception("[Explorer] cycle %d failed", self.cycles)
            self._fire(ExplorationEvent.FAULT, f"Cycle failed: {exc}", token)
        finally:
            self._record_cycle(snapshot)
        return self._state

    def _run_cycle(self, token: CancellationToken) -> Optional[OccupancyGridSnapshot]:
        # Detecting
        try:
            snapshot = self.grid_source.get_snapshot()
            if snapshot is None:
                raise StaleStateWarning("grid source returned no snapshot")
        except StaleStateWarning as exc:
            logger.warning("[Explorer] grid unavailable: %s", exc)
            self._fire(ExplorationEvent.GRID_UNAVAILABLE, f"Grid unavailable: {exc}", token)
            return None

        frontier = detect_largest_frontier(snapshot, min_size=self.config.min_frontier_size)
        if frontier is None:
            self.largest_frontier = None
            self.goal_xy = None
            self._fire(
                ExplorationEvent.NO_FRONTIER,
                "Exploration complete. No more frontiers found.",
                token,
            )
            return snapshot

        self.largest_frontier = frontier
        self.goal_xy = frontier.goal
        if not self._fire(
            ExplorationEvent.FRONTIER_FOUND,
            f"Frontier of {frontier.size} cells, goal ({frontier.goal[0]:.2f}, {frontier.goal[1]:.2f})",
            token,
        ):
            return snapshot

        # Planning
        path = self._plan_to_frontier(snapshot, frontier.goal, token)
        if path is None:
            return snapshot
        if not self._fire(
            ExplorationEvent.PLAN_READY,
            f"Path of {len(path)} waypoints to ({frontier.goal[0]:.2f}, {frontier.goal[1]:.2f})",
            token,
        ):
            return snapshot

        # Following
        outcome = self.follow_path(path, token)
        if outcome is ExplorationEvent.GOAL_REACHED:
            self.goals_reached += 1
            message = "Goal reached"
        elif outcome is ExplorationEvent.PATH_EXHAUSTED:
            message = f"Gave up following after {self.config.max_follow_iterations} iterations"
        else:
            message = "Following cancelled"
        self._fire(outcome, message, token)
        return snapshot

    def _plan_to_frontier(
        self, snapshot: OccupancyGridSnapshot, goal_xy: XY, token: CancellationToken
    ) -> Optional[Path]:
        try:
            pose = as_pose(self.pose_source.get_pose())
            self.robot_pose = pose
            planner = self.planner_factory(snapshot)
            path = ensure_path(planner.plan(pose.xy, goal_xy))
        except (PlanningFailure, StaleStateWarning) as exc:
            self.planning_failures += 1
            logger.warning("[Explorer] Path could not be found: %s", exc)
            self._fire(ExplorationEvent.PLAN_FAILED, f"Path could not be found: {exc}", token)
            return None
        self.current_path = path
        return path

    # ---------- following loop ----------

    def follow_path(
        self, path: Path, token: Optional[CancellationToken] = None
    ) -> ExplorationEvent:
        """
        Track `path` with pure pursuit until the goal is reached, the
        iteration budget runs out, or `token` is cancelled.

        Per iteration: poll cancellation, read pose, compute command, emit
        command, update SLAM, check goal. A stale pose emits zero velocity
        and retries on the next iteration. The robot is always sent a zero
        command when the loop ends.

        Returns GOAL_REACHED, PATH_EXHAUSTED or CANCELLED.
        """
        if not path:
            raise ValueError("cannot follow an empty path")
        token = token or self._token
        cfg = self.config
        self.controller.reset(path)
        logger.info("[Explorer] following path of %d waypoints", len(path))

        try:
            for iteration in range(cfg.max_follow_iterations):
                if token.cancelled:
                    return ExplorationEvent.CANCELLED

                try:
                    pose = as_pose(self.pose_source.get_pose())
                except StaleStateWarning as exc:
                    logger.warning("[Explorer] stale pose at iteration %d: %s", iteration, exc)
                    self._move(0.0, 0.0)
                    self._pause(cfg.control_period_s)
                    continue
                self.robot_pose = pose

                command = self.controller.track(path, pose)
                if token.cancelled:
                    return ExplorationEvent.CANCELLED

                self._move(command.linear, command.angular)
                self.map_updater.update_slam(path)

                if command.goal_reached:
                    logger.info("[Explorer] Goal reached after %d iterations", iteration + 1)
                    return ExplorationEvent.GOAL_REACHED
                if token.cancelled:
                    return ExplorationEvent.CANCELLED

                self._pause(cfg.control_period_s)

            logger.warning("[Explorer] path not completed within %d iterations", cfg.max_follow_iterations)
            return ExplorationEvent.PATH_EXHAUSTED
        finally:
            self._move(0.0, 0.0)

    # ---------- helpers ----------

    def _move(self, linear: float, angular: float) -> None:
        self.actuator.move_robot(self.connection, linear, angular)

    def _pause(self, seconds: float) -> None:
        if seconds > 0:
            self._sleep(seconds)

    def _fire(self, event: ExplorationEvent, message: str, token: CancellationToken) -> bool:
        """
        Apply an event raised by the cycle. Events from a cancelled run are
        dropped (stop_exploration already moved the engine to TERMINATED).
        Returns False when the run is cancelled or has terminated.
        """
        with self._lock:
            if token.cancelled or token is not self._token:
                return False
            effects = self._apply_transition(event, message)
            if self._state is ExplorationState.TERMINATED:
                token.cancel()
        self._run_effects(effects)
        return self._state is not ExplorationState.TERMINATED

    def _apply_transition(self, event: ExplorationEvent, message: str) -> Tuple[Effect, ...]:
        previous = self._state
        new_state, effects = transition(previous, event)
        self._state = new_state
        self.last_event = message
        if event in (ExplorationEvent.PLAN_FAILED, ExplorationEvent.GRID_UNAVAILABLE,
                     ExplorationEvent.FAULT):
            logger.warning("[Explorer] %s -> %s: %s", previous.name, new_state.name, message)
        else:
            logger.info("[Explorer] %s -> %s: %s", previous.name, new_state.name, message)
        return effects

    def _run_effects(self, effects: Tuple[Effect, ...]) -> None:
        if self.trigger is None:
            return
        for effect in effects:
            if effect is Effect.START_TRIGGER:
                self.trigger.start()
            elif effect is Effect.STOP_TRIGGER:
                self.trigger.stop()

    def _record_cycle(self, snapshot: Optional[OccupancyGridSnapshot]) -> None:
        if self.event_log is None:
            return
        pose = self.robot_pose
        goal = self.goal_xy
        self.event_log.log(
            cycle=self.cycles,
            state=self._state.value,
            event=self.last_event,
            pose_x=pose.x if pose else None,
            pose_y=pose.y if pose else None,
            pose_theta=pose.theta if pose else None,
            frontier_size=self.largest_frontier.size if self.largest_frontier else 0,
            goal_x=goal[0] if goal else None,
            goal_y=goal[1] if goal else None,
            path_length=compute_path_length(list(self.current_path)) if self.current_path else 0.0,
            coverage_pct=coverage_percent(snapshot) if snapshot is not None else None,
            entropy_proxy=entropy_proxy(snapshot) if snapshot is not None else None,
        )
