# app/services/lifecycle/errors.py
"""
Error taxonomy for lifecycle services.

Routers translate these into HTTP status codes; the CLI prints them and
exits non-zero.
"""


class LifecycleError(Exception):
    """Base class for lifecycle service errors."""

    pass


class ValidationError(LifecycleError, ValueError):
    """Malformed retention rule, empty rule set, or invalid field value."""

    pass


class NotFoundError(LifecycleError, LookupError):
    """Policy or legal hold does not exist (or belongs to another org)."""

    pass


class ConflictError(LifecycleError):
    """Enforcement already running for this policy. Schedulers skip the cycle."""

    pass


class SourceUnavailableError(LifecycleError):
    """The snapshot source could not be reached or returned a server error."""

    pass


class SnapshotDeletionError(LifecycleError):
    """The snapshot source refused to delete one snapshot."""

    def __init__(self, snapshot_id: str, message: str):
        super().__init__(f"Snapshot {snapshot_id}: {message}")
        self.snapshot_id = snapshot_id
