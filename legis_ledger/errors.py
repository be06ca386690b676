"""
Error taxonomy for the legislative voting core.

Every failure the core surfaces is one of the classes below. Each carries a
stable ``code`` so request layers can map errors without parsing messages.

- InvalidStateError        : operation not legal in the current lifecycle state
- PreconditionFailedError  : business precondition unmet (empty session, unregistered voter)
- ConflictError            : data-level conflict (law with votes, duplicate registration)
- LedgerError              : remote ledger call failed, timed out, or returned malformed data
- NotFoundError            : entity missing from the repository
- StorageError             : repository failure
- ValidationError          : malformed data at the boundary (tx hashes, addresses, ranges)
"""

from __future__ import annotations


class LegislatureError(Exception):
    """Base class for all errors raised by the voting core."""

    code = "legislature_error"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class InvalidStateError(LegislatureError):
    """Raised when a lifecycle transition is attempted from the wrong state."""

    code = "invalid_state"


class PreconditionFailedError(LegislatureError):
    """Raised when a business precondition does not hold."""

    code = "precondition_failed"


class ConflictError(LegislatureError):
    """Raised when an operation conflicts with existing data."""

    code = "conflict"


class LedgerError(LegislatureError):
    """Raised when the external ledger fails or answers with malformed data."""

    code = "ledger_error"


class NotFoundError(LegislatureError):
    """Raised when a requested entity does not exist."""

    code = "not_found"


class StorageError(LegislatureError):
    """Raised when the repository cannot load or persist an entity."""

    code = "storage_error"


class ValidationError(LegislatureError):
    """Raised when boundary data has the wrong shape."""

    code = "validation_error"
