# frontier_explorer/errors.py
"""
Error types shared by the exploration stack.

Only ConfigurationError is meant to reach the caller (at construction time).
Everything else is absorbed by the exploration engine and turned into a
state transition or a retry.
"""


class ExplorerError(Exception):
    """Base class for exploration errors."""


class ConfigurationError(ExplorerError, ValueError):
    """Invalid grid thresholds, resolution, controller gains or missing collaborator."""


class PlanningFailure(ExplorerError):
    """The planner could not produce a path to the requested goal."""


class StaleStateWarning(ExplorerError):
    """Pose or grid is unavailable (or out of date) at a poll point."""
