"""Service error hierarchy for generation, storage and batch admission.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (client errors, malformed responses)
- BatchAdmissionError: Request rejected before any generation work starts
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Server error / service unavailable (500, 503)
    - Connection resets
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Bad request / authentication failures (400, 401, 403)
    - Responses without candidates or image data
    """

    pass


class SourceImageError(PermanentError):
    """Source image could not be fetched (unreachable, too large, timed out)."""

    pass


class StorageUploadError(ServiceError):
    """Generated image could not be written to object storage."""

    pass


# Batch admission errors (raised to the caller before generation starts)
class BatchAdmissionError(ServiceError):
    """Base exception for rejected generation requests."""

    pass


class InvalidBatchError(BatchAdmissionError):
    """Batch request is empty or exceeds the configured maximum size."""

    pass


class BatchInProgressError(BatchAdmissionError):
    """Another batch is already processing for the organization."""

    def __init__(self, organization_id: str):
        super().__init__(
            f"A generation batch is already running for organization {organization_id}. "
            "Try again when it has finished."
        )
        self.organization_id = organization_id


class UsageLimitExceededError(BatchAdmissionError):
    """The organization's monthly photo quota cannot cover the request."""

    def __init__(self, used: int | None, limit: int | None, requested: int):
        super().__init__(
            f"Monthly limit reached ({used}/{limit} photos, {requested} requested). "
            "Upgrade the plan to continue."
        )
        self.used = used
        self.limit = limit
        self.requested = requested
