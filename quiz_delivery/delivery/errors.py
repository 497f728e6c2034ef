"""
Delivery-specific exceptions.

Per-item failures (DeliveryRequestError) are isolated by the engine.
Everything else escalates to the runner or the request boundary.
"""

from typing import Optional


class DeliveryError(Exception):
    """Base exception for all delivery errors."""
    pass


class DeliveryRequestError(DeliveryError):
    """
    Raised when a single Notion call fails.

    retryable is True for rate limiting (429), server errors (>= 500),
    timeouts and transport failures without a status code.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class JobNotFoundError(DeliveryError):
    """Raised when a requested delivery job does not exist."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Delivery job not found: {job_id}")


class InvalidTransitionError(DeliveryError):
    """
    Raised when a status change would break job monotonicity.

    Also used when a conditional update finds the job in an unexpected
    status (e.g. started twice).
    """

    def __init__(self, job_id: str, current_status: str, target_status: str):
        self.job_id = job_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Invalid transition for job {job_id}: {current_status} -> {target_status}"
        )


class InvalidProgressError(DeliveryError):
    """Raised when reported counters break processed = succeeded + failed <= total."""
    pass


class JobStoreUnavailableError(DeliveryError):
    """
    Raised when the job store cannot be used at all.

    Typical causes: schema not migrated, unreadable database file.
    """
    pass


class AttemptSourceError(DeliveryError):
    """Base for attempt eligibility errors. Carries the HTTP status to report."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AttemptNotFoundError(AttemptSourceError):
    """Raised when the attempt does not exist."""

    status_code = 404

    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        super().__init__("attempt not found")


class AttemptForbiddenError(AttemptSourceError):
    """Raised when the attempt belongs to another user."""

    status_code = 403

    def __init__(self, attempt_id: str):
        self.attempt_id = attempt_id
        super().__init__("forbidden")


class AttemptNotDeliverableError(AttemptSourceError):
    """Raised when the attempt is not finished and graded yet, or unreadable."""

    status_code = 400

    def __init__(self, attempt_id: str, message: str = "attempt must be completed before delivery"):
        self.attempt_id = attempt_id
        super().__init__(message)
