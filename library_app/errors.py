"""Error taxonomy shared by the managers, the borrow engine and the API layer.

Every business rule violation is raised as a subclass of ``LibraryError``.
The HTTP layer reads ``status_code`` to build the response, so the core
never needs to know about FastAPI.
"""


class LibraryError(Exception):
    """Base class for all expected, caller-correctable failures."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    """A required field is missing or malformed."""

    status_code = 400


class AuthenticationError(LibraryError):
    """Missing, malformed or expired credential, or wrong password."""

    status_code = 401


class AccessDeniedError(LibraryError):
    """The caller's role is not allowed to perform the operation."""

    status_code = 403


class NotFoundError(LibraryError):
    status_code = 404


class ConflictError(LibraryError):
    """Duplicate email, double return, copy-count underflow and similar."""

    status_code = 409


class CapacityExceededError(LibraryError):
    """No available copies left for the requested book."""

    status_code = 409


class BorrowLimitExceededError(CapacityExceededError):
    """The member already holds the maximum number of open borrows."""


class StorageError(LibraryError):
    """The persistence store failed; details are logged, never returned."""

    status_code = 500
