"""Service error hierarchy for image generation and background dispatch.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation, configuration)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
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


# Input validation errors (rejected before any write)
class PromptValidationError(ValueError):
    """Prompt is missing, not a string, or too long."""

    pass


class ImageNumValidationError(ValueError):
    """Requested number of images is out of range."""

    pass


# File storage errors
class StorageKeyResolutionError(PermanentError):
    """A full URL could not be translated into a storage key."""

    pass


# Background dispatch errors
class AsyncCallerConfigError(PermanentError):
    """The async caller cannot be constructed (missing URL or secret)."""

    pass


class AsyncCallError(ServiceError):
    """The async service answered a dispatch call with an error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DispatchCancelledError(ServiceError):
    """A dispatch call was cancelled before it sent its request."""

    pass
