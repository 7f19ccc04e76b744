"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (missing application state, config validation, etc.). The global handler
  logs the full message at ERROR and returns a generic "Internal server error"
  (500) to the client.
- ``ValidationError``: rejected client input (disallowed file type, oversize
  upload, unsafe path, inconsistent batch). Raised before any sync attempt;
  the message is safe to forward to clients.
- ``SyncError`` and its subclasses: failures of the repository sync engine.
  Messages are written to be client-safe (they never carry credentials).
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class ValidationError(ValueError):
    """Client input rejected at the boundary.

    ``status_code`` lets the boundary distinguish oversize (413) and
    disallowed media (415) from generic invalid input (422).
    """

    def __init__(self, message: str, status_code: int = 422) -> None:
        super().__init__(message)
        self.status_code = status_code


class SyncError(Exception):
    """An irrecoverable failure while synchronizing files to the remote repository."""


class SyncTimeoutError(SyncError):
    """The deadline around a whole sync call expired."""


class NotFoundError(SyncError):
    """The remote path does not exist."""


class ConflictError(SyncError):
    """The remote version token is stale: another writer got there first."""


class TransportError(SyncError):
    """Network, HTTP or subprocess failure talking to the remote repository."""


class PushRejectedError(TransportError):
    """``git push`` was refused because the remote branch moved ahead."""
