"""Exception hierarchy for the agent job engine.

Client input errors are rejected before a job exists. Provider errors are
turned into structured tool results by the tool layer. Model and storage
errors fail the job. Push delivery errors are only ever logged.
"""

from __future__ import annotations


class ConciergeError(Exception):
    """Base class for all engine errors."""


# --- Client input ---


class InvalidJobRequestError(ConciergeError):
    """Job creation input is unusable (empty prompt, missing session)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class ThreadNotFoundError(ConciergeError):
    pass


class ThreadOwnershipError(ConciergeError):
    """A thread was referenced from a session that does not own it."""


# --- Job state machine ---


class JobNotFoundError(ConciergeError):
    pass


class InvalidJobTransitionError(ConciergeError):
    """A transition was attempted from the wrong state.

    Seeing this means a job was executed more than once.
    """

    def __init__(self, job_id: str, expected: str, actual: str, target: str) -> None:
        super().__init__(
            f"Job {job_id}: cannot move to '{target}' from '{actual}' (expected '{expected}')"
        )
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
        self.target = target


# --- External collaborators ---


class ProviderError(ConciergeError):
    """A search provider failed or returned an unusable response."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    pass


class ModelError(ConciergeError):
    """The language model call failed."""


class ModelTimeoutError(ModelError):
    pass


class PushDeliveryError(ConciergeError):
    """Push delivery failed. ``gone`` marks a permanently dead endpoint."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def gone(self) -> bool:
        return self.status_code in (404, 410)
