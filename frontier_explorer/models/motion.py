# Motion models for propagating a robot pose under velocity commands

from typing import Optional, Tuple
import numpy as np

Pose = np.ndarray  # shape (3,) -> [x, y, theta]
Control = Tuple[float, float]  # (v, omega)


def sample_motion_velocity(
    pose: Pose,
    control: Control,
    dt: float,
    noise_std: Tuple[float, float] = (0.0, 0.0),
    rng: Optional[np.random.Generator] = None,
) -> Pose:
    # Velocity motion model (unicycle), exact arc integration
    x, y, theta = pose
    v, omega = control

    sigma_v, sigma_omega = noise_std
    if sigma_v > 0 or sigma_omega > 0:
        if rng is None:
            rng = np.random.default_rng()
        v = v + rng.normal(0, sigma_v)
        omega = omega + rng.normal(0, sigma_omega)

    if abs(omega) < 1e-6:  # Straight line motion
        x_new = x + v * dt * np.cos(theta)
        y_new = y + v * dt * np.sin(theta)
        theta_new = theta
    else:  # Curved motion
        radius = v / omega
        x_new = x + radius * (np.sin(theta + omega * dt) - np.sin(theta))
        y_new = y - radius * (np.cos(theta + omega * dt) - np.cos(theta))
        theta_new = theta + omega * dt

    # Normalize angle to [-pi, pi]
    theta_new = (theta_new + np.pi) % (2 * np.pi) - np.pi

    return np.array([x_new, y_new, theta_new], dtype=float)
