"""Custom exceptions for the integration access gateway."""


class IntegrationAuthError(Exception):
    """Base exception for the integration access gateway."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(IntegrationAuthError):
    """Resource not found exception."""

    def __init__(self, message: str = "Resource not found"):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(message, 404)


class UnauthorizedError(IntegrationAuthError):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized", reason: str = None):
        """Initialize UnauthorizedError with 401 status code."""
        super().__init__(message, 401)
        self.reason = reason


class ForbiddenError(IntegrationAuthError):
    """Forbidden access exception."""

    def __init__(self, message: str = "Forbidden", reason: str = None):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403)
        self.reason = reason


class ValidationError(IntegrationAuthError):
    """Validation error exception."""

    def __init__(self, message: str = "Validation failed"):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422)


class ConflictError(IntegrationAuthError):
    """Resource conflict exception."""

    def __init__(self, message: str = "Resource conflict"):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409)


class StoreUnavailableError(IntegrationAuthError):
    """The credential store failed to answer a read or write.

    Never to be read as a denial: callers retry or alert instead.
    """

    reason = "store_unavailable"

    def __init__(self, message: str = "Credential store unavailable"):
        """Initialize StoreUnavailableError with 503 status code."""
        super().__init__(message, 503)


class RateLimitExceededError(IntegrationAuthError):
    """Too many requests for the caller's effective rate limit."""

    def __init__(self, limit: int, retry_after: float, message: str = "Too Many Attempts."):
        """Initialize RateLimitExceededError with 429 status code."""
        super().__init__(message, 429)
        self.limit = limit
        self.retry_after = retry_after
