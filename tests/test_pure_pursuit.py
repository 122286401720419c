import math

import numpy as np
import pytest

from frontier_explorer.control.pure_pursuit import PurePursuitController
from frontier_explorer.errors import ConfigurationError
from frontier_explorer.models.motion import sample_motion_velocity


def test_goal_reached_boundary():
    ctrl = PurePursuitController(lookahead_distance=0.5)
    pose = (0.0, 0.0, 0.0)

    assert ctrl.track([(0.0, 0.0), (0.49, 0.0)], pose).goal_reached
    assert not ctrl.track([(0.0, 0.0), (0.5, 0.0)], pose).goal_reached
    assert not ctrl.track([(0.0, 0.0), (0.0, 0.51)], pose).goal_reached


def test_single_point_path_is_reached_immediately():
    ctrl = PurePursuitController()
    cmd = ctrl.track([(5.0, 5.0)], (0.0, 0.0, 0.0))
    assert cmd == (0.0, 0.0, True)


def test_empty_path_is_rejected():
    with pytest.raises(ValueError):
        PurePursuitController().track([], (0.0, 0.0, 0.0))


def test_straight_path_has_no_turn():
    ctrl = PurePursuitController(desired_linear_velocity=0.3)
    path = [(x, 0.0) for x in np.linspace(0.0, 3.0, 13)]
    linear, angular, reached = ctrl.track(path, (0.0, 0.0, 0.0))
    assert linear == pytest.approx(0.3)
    assert angular == pytest.approx(0.0)
    assert not reached


def test_turns_towards_the_path():
    ctrl = PurePursuitController(lookahead_distance=0.5, max_angular_velocity=5.0)
    path = [(0.0, 0.0), (0.0, 1.0), (0.0, 2.0)]

    # heading +x, path goes +y: target on the left -> positive angular velocity
    cmd = ctrl.track(path, (0.0, 0.0, math.radians(45)))
    assert cmd.angular > 0

    ctrl.reset()
    cmd = ctrl.track(path, (0.0, 0.0, math.radians(135)))
    assert cmd.angular < 0


def test_curvature_matches_pure_pursuit_law():
    ctrl = PurePursuitController(lookahead_distance=1.0, desired_linear_velocity=0.5, max_angular_velocity=10.0)
    path = [(0.0, 0.0), (1.0, 1.0), (2.0, 2.0)]
    cmd = ctrl.track(path, (0.0, 0.0, 0.0))

    # lookahead point (0.71, 0.71): alpha = 45 deg, d = L = 1 -> kappa = 2 sin(alpha)
    assert cmd.angular == pytest.approx(0.5 * 2.0 * math.sin(math.pi / 4))


def test_angular_velocity_is_clamped():
    ctrl = PurePursuitController(lookahead_distance=0.5, desired_linear_velocity=1.0, max_angular_velocity=0.4)
    cmd = ctrl.track([(0.0, 0.0), (0.5, 0.5), (1.0, 1.0)], (0.0, 0.0, 0.0))
    assert cmd.angular == pytest.approx(0.4)


def test_target_behind_keeps_desired_velocity_by_default():
    ctrl = PurePursuitController(desired_linear_velocity=0.3, max_angular_velocity=1.0)
    cmd = ctrl.track([(0.0, 0.0), (-1.0, 0.0), (-2.0, 0.0)], (0.0, 0.0, 0.0))
    assert cmd.linear == pytest.approx(0.3)
    assert not cmd.goal_reached

    ctrl.reset()
    cmd = ctrl.track([(0.0, 0.0), (-1.0, -1.0), (-2.0, -2.0)], (0.0, 0.0, 0.0))
    assert cmd.linear == pytest.approx(0.3)
    # alpha = -135 deg, d = L: omega = v * 2 sin(alpha) / L
    assert cmd.angular == pytest.approx(0.3 * 2.0 * math.sin(-3 * math.pi / 4) / 0.5)


def test_target_behind_turns_in_place_when_enabled():
    ctrl = PurePursuitController(max_angular_velocity=1.0, rotate_in_place_angle=math.pi / 2)
    cmd = ctrl.track([(0.0, 0.0), (-1.0, 0.0), (-2.0, 0.0)], (0.0, 0.0, 0.0))
    assert cmd.linear == 0.0
    assert abs(cmd.angular) == pytest.approx(1.0)

    # target ahead: normal pursuit even with the option on
    cmd = ctrl.track([(0.0, 0.0), (1.0, 0.0), (2.0, 0.0)], (0.0, 0.0, 0.0))
    assert cmd.linear == pytest.approx(0.3)


def test_slows_down_near_goal():
    ctrl = PurePursuitController(
        lookahead_distance=0.2, desired_linear_velocity=0.4,
        slowdown_distance=1.0, min_linear_velocity=0.1,
    )
    path = [(0.0, 0.0), (1.0, 0.0), (2.0, 0.0)]
    far = ctrl.track(path, (0.0, 0.0, 0.0))
    near = ctrl.track(path, (1.5, 0.0, 0.0))
    nearer = ctrl.track(path, (1.95, 0.0, 0.0))
    assert far.linear == pytest.approx(0.4)
    assert near.linear == pytest.approx(0.2)
    assert nearer.linear == pytest.approx(0.1)


def test_matched_index_never_moves_backwards():
    ctrl = PurePursuitController(lookahead_distance=0.3)
    path = [(float(x), 0.0) for x in range(6)]

    ctrl.track(path, (3.0, 0.1, 0.0))
    assert ctrl.matched_index == 3
    ctrl.track(path, (0.0, 0.1, 0.0))
    assert ctrl.matched_index == 3

    # a new path resets tracking
    ctrl.track(list(reversed(path)), (0.0, 0.1, 0.0))
    assert ctrl.matched_index == 5


def test_tracking_converges_on_simulated_robot():
    ctrl = PurePursuitController(lookahead_distance=0.5, desired_linear_velocity=0.3)
    path = [(0.0, 0.0), (1.0, 0.0), (2.0, 1.0), (2.0, 2.0)]
    pose = np.array([0.0, 0.0, 0.0])

    for _ in range(500):
        v, w, reached = ctrl.track(path, pose)
        if reached:
            break
        pose = sample_motion_velocity(pose, (v, w), 0.1)
    assert reached
    assert math.hypot(pose[0] - 2.0, pose[1] - 2.0) < 0.5


@pytest.mark.parametrize("kwargs", [
    {"lookahead_distance": 0.0},
    {"desired_linear_velocity": -0.1},
    {"max_angular_velocity": 0.0},
    {"slowdown_distance": -1.0},
    {"rotate_in_place_angle": 0.0},
    {"rotate_in_place_angle": 4.0},
])
def test_invalid_gains(kwargs):
    with pytest.raises(ConfigurationError):
        PurePursuitController(**kwargs)
