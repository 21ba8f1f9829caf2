from __future__ import annotations


class GroError(Exception):
    """Base class for engine errors."""


class ValidationError(GroError):
    """A desired state or policy was rejected at the boundary."""


class StaleSnapshot(GroError):
    """The runtime could not be observed; the last snapshot must be reused."""


class RuntimeUnavailable(GroError):
    """The cluster runtime failed to answer (transient, retried)."""


class RolloutFailed(GroError):
    """The health gate exhausted its retry budget or the rollout timed out."""

    def __init__(self, message: str, revision_id: int | None = None):
        super().__init__(message)
        self.revision_id = revision_id
