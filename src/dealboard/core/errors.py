"""Domain error taxonomy.

Every error carries the name of the operation that failed and, where one
exists, the underlying exception. API handlers translate these into HTTP
status codes; core code never raises HTTPException directly.

- RemoteSourceError: anything that went wrong talking to Salesforce
  - AuthenticationError: login rejected or session refused
  - QueryError: a SOQL query failed (bad request, server error, transport)
- PersistenceError: the local store rejected a statement
- ValidationError: caller input failed domain validation
- SyncInProgressError: a sync run was requested while one is running
"""

from __future__ import annotations


class DealboardError(Exception):
    """Base class for all domain errors."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.cause = cause

    def __str__(self) -> str:
        if self.operation:
            return f"{self.operation}: {self.message}"
        return self.message


class RemoteSourceError(DealboardError):
    """Failure while reading from the remote CRM."""


class AuthenticationError(RemoteSourceError):
    """Remote CRM rejected the credentials or the session."""


class QueryError(RemoteSourceError):
    """A remote query failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        cause: BaseException | None = None,
        error_code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, operation=operation, cause=cause)
        self.error_code = error_code
        self.status_code = status_code


class PersistenceError(DealboardError):
    """The local store failed to execute a statement."""


class ValidationError(DealboardError, ValueError):
    """Input failed domain validation."""


class SyncInProgressError(DealboardError):
    """A sync run is already in progress."""
