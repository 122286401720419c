import csv
import math

import numpy as np
import pytest

from frontier_explorer.configs.config_loader import ExplorerConfig
from frontier_explorer.errors import ConfigurationError
from frontier_explorer.eval.logger import CsvLogger
from frontier_explorer.explore.engine import (
    Effect,
    ExplorationEngine,
    ExplorationEvent,
    ExplorationState,
    transition,
)
from frontier_explorer.slam.interface import SLAMInterface
from doubles import FREE_P, UNKNOWN_P, FakeRobot, RevealingWorld, ScriptedPlannerFactory, make_snapshot

CONNECTION = object()


def make_engine(grid, robot, config, planner_factory=None, map_updater=None, **kwargs):
    return ExplorationEngine(
        grid_source=grid,
        pose_source=kwargs.pop("pose_source", robot),
        actuator=robot,
        map_updater=map_updater if map_updater is not None else grid,
        planner_factory=planner_factory,
        config=config,
        connection=CONNECTION,
        periodic=False,
        sleep=lambda s: None,
        **kwargs,
    )


def test_transition_table():
    S, E = ExplorationState, ExplorationEvent
    assert transition(S.IDLE, E.START) == (S.DETECTING, (Effect.START_TRIGGER,))
    assert transition(S.TERMINATED, E.START).state is S.DETECTING
    assert transition(S.DETECTING, E.FRONTIER_FOUND).state is S.PLANNING
    assert transition(S.DETECTING, E.NO_FRONTIER) == (S.TERMINATED, (Effect.STOP_TRIGGER,))
    assert transition(S.PLANNING, E.PLAN_FAILED).state is S.DETECTING
    assert transition(S.PLANNING, E.PLAN_READY).state is S.FOLLOWING
    assert transition(S.FOLLOWING, E.GOAL_REACHED).state is S.DETECTING
    assert transition(S.FOLLOWING, E.PATH_EXHAUSTED).state is S.DETECTING
    assert transition(S.FOLLOWING, E.CANCELLED).state is S.TERMINATED
    for state in (S.DETECTING, S.PLANNING, S.FOLLOWING):
        assert transition(state, E.STOP) == (S.TERMINATED, (Effect.STOP_TRIGGER,))

    with pytest.raises(ValueError):
        transition(S.IDLE, E.PLAN_READY)
    with pytest.raises(ValueError):
        transition(S.IDLE, E.STOP)
    with pytest.raises(ValueError):
        transition(S.TERMINATED, E.FRONTIER_FOUND)


def test_missing_collaborator_is_a_configuration_error(slam, fast_config):
    robot = FakeRobot()
    with pytest.raises(ConfigurationError):
        ExplorationEngine(None, robot, robot, slam, config=fast_config, periodic=False)
    with pytest.raises(ConfigurationError):
        ExplorationEngine(slam, robot, robot, slam,
                          config=ExplorerConfig(lookahead_distance=0.0), periodic=False)


def test_start_and_stop_are_idempotent(slam, fast_config):
    engine = make_engine(slam, FakeRobot(), fast_config)
    assert engine.state is ExplorationState.IDLE
    assert not engine.is_exploring

    engine.stop_exploration()
    assert engine.state is ExplorationState.IDLE

    engine.start_exploration()
    engine.start_exploration()
    assert engine.state is ExplorationState.DETECTING
    assert engine.is_exploring

    engine.stop_exploration()
    engine.stop_exploration()
    assert engine.state is ExplorationState.TERMINATED
    assert not engine.is_exploring

    engine.start_exploration()
    assert engine.state is ExplorationState.DETECTING


def test_tick_does_nothing_until_started(slam, fast_config):
    robot = FakeRobot()
    engine = make_engine(slam, robot, fast_config)
    assert engine.tick() is ExplorationState.IDLE
    assert engine.cycles == 0
    assert robot.commands == []


def test_no_frontier_terminates(fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(np.full((10, 10), FREE_P)))
    robot = FakeRobot()
    engine = make_engine(slam, robot, fast_config)

    engine.start_exploration()
    assert engine.tick() is ExplorationState.TERMINATED
    assert not engine.is_exploring
    assert "No more frontiers" in engine.last_event
    assert engine.largest_frontier is None
    assert robot.commands == []


def test_planning_failure_is_retried(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    planner = ScriptedPlannerFactory([None, None])
    engine = make_engine(slam, FakeRobot(), fast_config, planner_factory=planner)

    engine.start_exploration()
    assert engine.tick() is ExplorationState.DETECTING
    assert engine.is_exploring
    assert engine.planning_failures == 1
    assert engine.last_event.startswith("Path could not be found")

    assert engine.tick() is ExplorationState.DETECTING
    assert engine.planning_failures == 2
    # a fresh planner is built for every cycle
    assert len(planner.snapshots) == 2
    assert planner.requests[0][1] == pytest.approx((1.5, 1.5))


def test_end_to_end_corner_block(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot(pose=(0.0, 0.0, math.pi / 4))
    engine = make_engine(slam, robot, fast_config)

    engine.start_exploration()
    assert engine.tick() is ExplorationState.DETECTING

    assert engine.largest_frontier.size == 7
    assert engine.goal_xy == pytest.approx((1.5, 1.5))
    assert engine.goals_reached == 1
    assert engine.last_event == "Goal reached"
    assert engine.current_path[0] == pytest.approx((0.0, 0.0))
    assert engine.current_path[-1] == pytest.approx((1.5, 1.5))

    # goal declared once the pose read in the last iteration was inside the lookahead
    last_pose = engine.robot_pose
    assert math.hypot(last_pose.x - 1.5, last_pose.y - 1.5) < fast_config.lookahead_distance

    # one update_slam per emitted control command, then a final stop
    assert robot.commands[-1] == (0.0, 0.0)
    assert len(slam.update_calls) == len(robot.commands) - 1
    assert all(call == engine.current_path for call in slam.update_calls)
    assert all(c is CONNECTION for c in robot.connections)


def test_exploration_runs_until_map_is_complete(corner_block_grid, fast_config):
    robot = FakeRobot(pose=(0.0, 0.0, 0.0))
    world = RevealingWorld(known=corner_block_grid != UNKNOWN_P, robot=robot, sensor_range=1.0)
    engine = make_engine(world, robot, fast_config)

    engine.start_exploration()
    for _ in range(20):
        if engine.tick() is ExplorationState.TERMINATED:
            break

    assert engine.state is ExplorationState.TERMINATED
    assert world.known.all()
    assert engine.goals_reached >= 1
    assert not engine.is_exploring


def test_stop_during_following_halts_within_one_iteration(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot(pose=(0.0, 0.0, math.pi / 4))
    engine = make_engine(slam, robot, fast_config)

    def stop_on_third(n):
        if n == 3:
            engine.stop_exploration()

    robot.on_move = stop_on_third
    engine.start_exploration()
    assert engine.tick() is ExplorationState.TERMINATED

    assert not engine.is_exploring
    assert engine.goals_reached == 0
    assert robot.commands[3:] == [(0.0, 0.0)]
    assert len(slam.update_calls) == 3

    # later ticks are no-ops
    assert engine.tick() is ExplorationState.TERMINATED
    assert len(robot.commands) == 4


class FlakyPose:
    def __init__(self, robot, fail_on):
        self.robot = robot
        self.fail_on = set(fail_on)
        self.calls = 0

    def get_pose(self):
        self.calls += 1
        if self.calls in self.fail_on:
            return None
        return self.robot.get_pose()


def test_stale_pose_emits_zero_velocity_and_retries(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot(pose=(0.0, 0.0, math.pi / 4))
    # call 1 is the planning read, call 2 the first following iteration
    engine = make_engine(slam, robot, fast_config, pose_source=FlakyPose(robot, fail_on={2}))

    engine.start_exploration()
    assert engine.tick() is ExplorationState.DETECTING

    assert robot.commands[0] == (0.0, 0.0)
    assert robot.commands[1][0] > 0
    assert engine.goals_reached == 1
    assert len(slam.update_calls) == len(robot.commands) - 2


def test_missing_pose_at_planning_is_a_planning_failure(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot()
    engine = make_engine(slam, robot, fast_config, pose_source=FlakyPose(robot, fail_on={1}))

    engine.start_exploration()
    assert engine.tick() is ExplorationState.DETECTING
    assert engine.planning_failures == 1
    assert robot.commands == []


def test_missing_grid_is_retried(slam, fast_config):
    engine = make_engine(slam, FakeRobot(), fast_config)
    engine.start_exploration()

    assert engine.tick() is ExplorationState.DETECTING
    assert engine.is_exploring
    assert engine.last_event.startswith("Grid unavailable")


class _NoSnapshotYet:
    def __init__(self, snapshot):
        self.snapshot = snapshot
        self.calls = 0

    def get_snapshot(self):
        self.calls += 1
        return None if self.calls == 1 else self.snapshot

    def update_slam(self, path):
        pass


def test_grid_source_returning_none_is_retried(corner_block_grid, fast_config, caplog):
    grid = _NoSnapshotYet(make_snapshot(corner_block_grid))
    engine = make_engine(grid, FakeRobot(pose=(0.0, 0.0, math.pi / 4)), fast_config)
    engine.start_exploration()

    assert engine.tick() is ExplorationState.DETECTING
    assert engine.is_exploring
    assert engine.last_event == "Grid unavailable: grid source returned no snapshot"
    assert "cycle 1 failed" not in caplog.text

    engine.tick()
    assert engine.goals_reached == 1


def test_collaborator_fault_does_not_kill_the_engine(corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))

    def broken_factory(snapshot):
        raise RuntimeError("planner crashed")

    engine = make_engine(slam, FakeRobot(), fast_config, planner_factory=broken_factory)
    engine.start_exploration()

    assert engine.tick() is ExplorationState.DETECTING
    assert engine.is_exploring
    assert "planner crashed" in engine.last_event


def test_follow_gives_up_after_iteration_budget(corner_block_grid):
    config = ExplorerConfig(control_period_s=0.0, max_follow_iterations=3)
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot(pose=(0.0, 0.0, math.pi / 4))
    engine = make_engine(slam, robot, config)

    engine.start_exploration()
    assert engine.tick() is ExplorationState.DETECTING
    assert engine.goals_reached == 0
    assert engine.last_event.startswith("Gave up")
    assert len(robot.commands) == 4
    assert robot.commands[-1] == (0.0, 0.0)


def test_follow_path_rejects_empty_path(slam, fast_config):
    engine = make_engine(slam, FakeRobot(), fast_config)
    with pytest.raises(ValueError):
        engine.follow_path(())


def test_follow_path_single_point(slam, fast_config):
    robot = FakeRobot()
    engine = make_engine(slam, robot, fast_config)
    engine.start_exploration()
    outcome = engine.follow_path(((3.0, 3.0),))
    assert outcome is ExplorationEvent.GOAL_REACHED
    assert robot.commands == [(0.0, 0.0), (0.0, 0.0)]


def test_cycle_log_and_status(tmp_path, corner_block_grid, fast_config):
    slam = SLAMInterface(snapshot=make_snapshot(corner_block_grid))
    robot = FakeRobot(pose=(0.0, 0.0, math.pi / 4))
    log_path = tmp_path / "logs" / "cycles.csv"

    with CsvLogger(str(log_path)) as log:
        engine = make_engine(slam, robot, fast_config, event_log=log)
        engine.start_exploration()
        engine.tick()
        engine.stop_exploration()
        engine.tick()

    with open(log_path, newline="") as f:
        rows = list(csv.DictReader(f))

    assert len(rows) == 1
    row = rows[0]
    assert row["state"] == "detecting"
    assert row["event"] == "Goal reached"
    assert int(row["frontier_size"]) == 7
    assert float(row["coverage_pct"]) == pytest.approx(91.0)
    assert float(row["entropy_proxy"]) == pytest.approx(0.09)
    assert float(row["path_length"]) == pytest.approx(1.5 * math.sqrt(2))

    status = engine.status()
    assert status["state"] == "terminated"
    assert status["is_exploring"] is False
    assert status["goals_reached"] == 1
    assert status["cycles"] == 1
