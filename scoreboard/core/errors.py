"""Error taxonomy shared by the metric, scoring, ranking and achievement services.

Propagation:
  - ValidationError / NotFoundError reach the immediate caller unchanged.
  - ConflictError is absorbed where grants are inserted.
  - ComputeError aborts one leaderboard recompute and reaches its caller.
  - DependencyError is logged and suppressed at the notification boundary.
"""


class ScoreboardError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(ScoreboardError):
    """Malformed input: missing field, non-numeric value, unknown enum value."""

    status_code = 400


class NotFoundError(ScoreboardError):
    """Reference to a user, leaderboard, metric or achievement that does not exist."""

    status_code = 404


class ConflictError(ScoreboardError):
    """Duplicate achievement grant detected by the storage layer."""

    status_code = 409


class ComputeError(ScoreboardError):
    """Leaderboard scoring failed (corrupt settings, unknown leaderboard type)."""

    status_code = 422


class DependencyError(ScoreboardError):
    """An outbound collaborator (notification relay) is unavailable."""

    status_code = 503
