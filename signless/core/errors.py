"""
Error taxonomy for the delegated transaction pipeline.

Precondition misses are not errors: they route to the conventional signing flow.
Everything here is an actual failure that the caller must surface.
"""

from typing import Optional


class SignlessError(Exception):
    """Base exception for pipeline errors."""

    status_code: int = 500
    error_type: str = "unknown"

    def __init__(self, message: str, status_code: Optional[int] = None, error_type: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_type is not None:
            self.error_type = error_type

    def get_http_status_code(self) -> int:
        """Get the appropriate HTTP status code for this error."""
        return self.status_code


class AlreadyExists(SignlessError):
    """A delegate key is already stored for the wallet; delete it first."""

    status_code = 409
    error_type = "already_exists"


class SigningUnavailable(SignlessError):
    """The delegate key disappeared between the precondition check and signing."""

    status_code = 409
    error_type = "signing_unavailable"


class RegistryUnavailable(SignlessError):
    """An on-chain view call against the module failed (network error or revert)."""

    status_code = 503
    error_type = "registry_unavailable"


class RelaySubmissionFailed(SignlessError):
    """The relay network rejected the fee estimate or the relayed call."""

    status_code = 502
    error_type = "relay_submission_failed"


class SubmissionInProgress(SignlessError):
    """The caller already has a delegated submission in flight for this wallet."""

    status_code = 409
    error_type = "submission_in_progress"
