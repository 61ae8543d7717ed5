"""Exception hierarchy and error categorization for the audiobook organizer."""

from .models import ErrorCategory


class OrganizerError(Exception):
    """Base exception for all organizer errors."""


class ConfigError(OrganizerError):
    """Invalid or missing configuration."""


class ScanError(OrganizerError):
    """The scan root could not be read. Fatal to the whole batch."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class SubdirectoryReadError(OrganizerError):
    """A subdirectory could not be listed during traversal."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path


class ProviderError(OrganizerError):
    """The metadata provider failed."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        endpoint: str = "",
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.category = category
        self.endpoint = endpoint


class ProviderNotFound(ProviderError):
    """The provider has no record for the query."""

    def __init__(self, query: str, endpoint: str = "") -> None:
        super().__init__(
            f"No metadata found for: {query}",
            status_code=404,
            category=ErrorCategory.PERMANENT,
            endpoint=endpoint,
        )
        self.query = query


class ProviderTransientError(ProviderError):
    """Rate limiting, server error, or network failure. Worth retrying."""

    def __init__(self, message: str, status_code: int = 0, endpoint: str = "") -> None:
        super().__init__(
            message,
            status_code=status_code,
            category=ErrorCategory.TRANSIENT,
            endpoint=endpoint,
        )


class OrganizeError(OrganizerError):
    """Destination path generation or file placement failed for one book."""


class QueueCancelled(OrganizerError):
    """A queued task was cleared before it started."""

    def __init__(self, reason: str = "Queue cleared") -> None:
        super().__init__(reason)
        self.reason = reason


class ExternalToolError(OrganizerError):
    """An external subprocess (ffmpeg, ffprobe) failed."""

    def __init__(self, tool: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"{tool} exited with code {exit_code}: {stderr}")
        self.tool = tool
        self.exit_code = exit_code
        self.stderr = stderr


def categorize_status_code(code: int) -> ErrorCategory:
    """Map an HTTP status code to an error category.

    0 (no response), 429 and 5xx are transient (retriable).
    Every other 4xx, including 404, is permanent.
    """
    if code == 0 or code == 429 or code >= 500:
        return ErrorCategory.TRANSIENT
    return ErrorCategory.PERMANENT


def is_retryable(error: BaseException) -> bool:
    """Decide whether a provider call that raised `error` should be retried."""
    if isinstance(error, ProviderError):
        return error.category == ErrorCategory.TRANSIENT
    return False
