import yaml
import math
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional, Union

from frontier_explorer.errors import ConfigurationError
from frontier_explorer.explore.scheduler import OVERFLOW_POLICIES

PROFILE_ENV_VAR = "FRONTIER_EXPLORER_PROFILE"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "explorer.yaml"


@dataclass
class ExplorerConfig:
    # Pure pursuit
    lookahead_distance: float = 0.5        # m, also the goal-reached radius
    desired_linear_velocity: float = 0.3   # m/s
    max_angular_velocity: float = 1.0      # rad/s
    slowdown_distance: float = 0.0         # m, 0 disables slowing near the goal
    min_linear_velocity: float = 0.05      # m/s
    rotate_in_place_angle: Optional[float] = None  # rad, None keeps driving at any heading error

    # Exploration trigger
    trigger_period_s: float = 1.0
    max_pending_ticks: int = 1
    overflow_policy: str = "coalesce"

    # Following loop
    control_period_s: float = 0.1
    max_follow_iterations: int = 600

    # Frontiers / planning
    min_frontier_size: int = 1
    allow_unknown: bool = True
    allow_diagonal: bool = True
    margin_cells: int = 0
    simplify_tolerance: float = 0.0

    def validate(self) -> "ExplorerConfig":
        positive = (
            "lookahead_distance", "desired_linear_velocity",
            "max_angular_velocity", "trigger_period_s",
        )
        for name in positive:
            if not getattr(self, name) > 0:
                raise ConfigurationError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("slowdown_distance", "min_linear_velocity", "control_period_s",
                     "margin_cells", "simplify_tolerance"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {getattr(self, name)}")
        if self.rotate_in_place_angle is not None and not 0 < self.rotate_in_place_angle <= math.pi:
            raise ConfigurationError(
                f"rotate_in_place_angle must lie in (0, pi] or be null, got {self.rotate_in_place_angle}"
            )
        if self.max_pending_ticks < 1:
            raise ConfigurationError("max_pending_ticks must be >= 1")
        if self.max_follow_iterations < 1:
            raise ConfigurationError("max_follow_iterations must be >= 1")
        if self.min_frontier_size < 1:
            raise ConfigurationError("min_frontier_size must be >= 1")
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigurationError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES}, got {self.overflow_policy!r}"
            )
        return self


def load_explorer_config(
    profile: Optional[str] = None,
    path: Optional[Union[str, Path]] = None,
) -> ExplorerConfig:
    """
    Loads ExplorerConfig from explorer.yaml.
    If profile is provided, tries to load that specific profile.
    Otherwise, checks FRONTIER_EXPLORER_PROFILE env var, or falls back to 'default'.
    Keys missing from the profile keep their dataclass defaults.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "r") as f:
            config = yaml.safe_load(f) or {}
    except OSError as exc:
        raise ConfigurationError(f"cannot read {config_path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"invalid YAML in {config_path}: {exc}") from exc
    if not isinstance(config, dict):
        raise ConfigurationError(f"{config_path} must map profile names to settings")

    # 1. Try argument
    target = profile

    # 2. Try env var
    if not target:
        target = os.environ.get(PROFILE_ENV_VAR)

    # 3. Fallback to default
    if not target or target not in config:
        target = "default"

    c = config.get(target) or {}
    if not isinstance(c, dict):
        raise ConfigurationError(f"profile {target!r} in {config_path} must be a mapping")

    known = {f.name: f for f in fields(ExplorerConfig)}
    unknown_keys = sorted(set(c) - set(known))
    if unknown_keys:
        raise ConfigurationError(f"unknown keys in profile {target!r}: {unknown_keys}")

    defaults = ExplorerConfig()
    values = {}
    for name, value in c.items():
        default = getattr(defaults, name)
        try:
            values[name] = _coerce(value, default)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"{target}.{name}: cannot use {value!r}") from exc

    return ExplorerConfig(**values).validate()


def _to_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    raise ValueError(f"expected true/false, got {value!r}")


def _to_int(value) -> int:
    # YAML floats must be whole numbers; bools are not counts
    if isinstance(value, bool):
        raise ValueError(f"expected an integer, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"expected an integer, got {value!r}")
        return int(value)
    return int(value)


def _coerce(value, default):
    if default is None:
        # optional float settings; null keeps them off
        return None if value is None else float(value)
    if isinstance(default, bool):
        return _to_bool(value)
    if isinstance(default, int):
        return _to_int(value)
    if isinstance(default, float):
        if isinstance(value, bool):
            raise ValueError(f"expected a number, got {value!r}")
        return float(value)
    return type(default)(value)
