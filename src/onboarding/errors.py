"""
Onboarding error types.

The gateway raises these; the sync engine turns them into PersistResult
values so callers never need try/except around a save.
"""


class OnboardingError(Exception):
    """Base class for onboarding failures."""


class SelectionLockedError(OnboardingError):
    """Hydration attempted after the user started editing a selection."""


class SyncError(OnboardingError):
    """A gateway call failed."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(SyncError):
    """Transport failure or timeout. The request may never have arrived."""

    retryable = True


class ServerError(SyncError):
    """The server answered with a 5xx."""

    retryable = True


class InvalidSelectionError(SyncError):
    """Unknown ID or malformed payload (400)."""


class UnauthorizedError(SyncError):
    """No valid session (401)."""


class RequestRejectedError(SyncError):
    """Any other 4xx response."""
