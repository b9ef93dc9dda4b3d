"""Service error hierarchy for the task provider and object storage.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Configuration errors
    """

    pass


# Kie AI task provider errors
class KieError(ServiceError):
    """Base exception for task provider errors."""

    pass


class KieRateLimitError(TransientError, KieError):
    """Rate limit exceeded (429)."""

    pass


class KieNetworkError(TransientError, KieError):
    """Network timeout or service unavailable."""

    pass


class KieAuthError(PermanentError, KieError):
    """Authentication failure (401, 403)."""

    pass


class KieRequestError(PermanentError, KieError):
    """Request rejected by the provider (bad request, error envelope)."""

    pass


# Object storage errors
class StorageError(ServiceError):
    """Base exception for object storage errors."""

    pass


class StorageNetworkError(TransientError, StorageError):
    """Network timeout, rate limit or storage unavailable."""

    pass


class StorageRequestError(PermanentError, StorageError):
    """Storage rejected the request (auth, missing bucket, bad key)."""

    pass
