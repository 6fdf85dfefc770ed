from typing import Optional


class AuthError(Exception):
    """Raised when a directory access token cannot be acquired."""


class InputFileError(Exception):
    """Raised when an input export is missing, unreadable or lacks required columns."""


class DirectoryRequestError(Exception):
    """Raised when a directory service call fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OutputFileError(Exception):
    """Raised when an export cannot be written to its destination."""
