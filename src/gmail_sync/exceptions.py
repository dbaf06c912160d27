"""Custom exceptions for the Gmail sync engine."""


class GmailSyncError(Exception):
    """Base exception for all Gmail sync engine errors."""


class ConfigurationError(GmailSyncError):
    """Exception raised for configuration related errors."""


class AuthenticationError(GmailSyncError):
    """Raised when no valid or refreshable credential exists."""


class StoreError(GmailSyncError):
    """Exception raised when the local mail store is unusable."""


class SyncInProgressError(GmailSyncError):
    """Raised when sync() is called while another session is running."""


class SyncCancelledError(GmailSyncError):
    """Raised when a session observes a cancellation request."""


class GmailAPIError(GmailSyncError):
    """Exception raised for Gmail API related errors."""

    def __init__(self, status_code: int, body: str | None = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Gmail API error {status_code}: {body or 'Unknown error'}")


class UnauthorizedError(GmailAPIError):
    """401: the bearer token was rejected; the user must sign in again."""

    def __init__(self, body: str | None = None) -> None:
        super().__init__(401, body)


class ForbiddenError(GmailAPIError):
    """403: access forbidden (also used by Gmail for some quota errors)."""

    def __init__(self, body: str | None = None) -> None:
        super().__init__(403, body)


class NotFoundError(GmailAPIError):
    """404: resource not found (expired history ids surface this way too)."""

    def __init__(self, body: str | None = None) -> None:
        super().__init__(404, body)


class RateLimitedError(GmailAPIError):
    """429/5xx persisted after every retry was spent."""

    def __init__(self, status_code: int = 429, body: str | None = None) -> None:
        super().__init__(status_code, body)

    def __str__(self) -> str:
        return f"Rate limited - please try again later (last status {self.status_code})"
