"""Engine API exceptions."""

from typing import Optional


class EngineAPIError(Exception):
    """Base exception for source and target engine API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        """Initialize engine API error.

        Args:
            message: Error message
            status_code: HTTP status code
            response_data: Response data from API
        """
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data


class EngineAuthenticationError(EngineAPIError):
    """Authentication error with an engine API."""

    pass


class EngineRateLimitError(EngineAPIError):
    """Rate limit exceeded error."""

    def __init__(self, message: str, retry_after: int = 60, **kwargs):
        """Initialize rate limit error.

        Args:
            message: Error message
            retry_after: Seconds to wait before retry
            **kwargs: Additional arguments for base class
        """
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class EngineNotFoundError(EngineAPIError):
    """Resource not found error."""

    pass


class EnginePermissionError(EngineAPIError):
    """Permission denied error."""

    pass


class EngineValidationError(EngineAPIError):
    """The engine rejected the request payload."""

    pass


class EngineConflictError(EngineAPIError):
    """The entity already exists on the engine."""

    pass
