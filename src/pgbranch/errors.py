"""
Error types raised by pgbranch.

Every branch-level failure keeps the underlying database error as its
``__cause__`` (and on ``.original``), so nothing the driver reported is lost.
"""

from __future__ import annotations

from typing import Optional


class PgBranchError(Exception):
    """Base error for everything raised by pgbranch."""


class ConfigError(PgBranchError):
    """Raised when settings cannot be resolved (e.g. no database URL)."""


class SchemaError(PgBranchError):
    """Raised when the records table cannot be created or does not match."""

    def __init__(self, table: str, detail: str) -> None:
        self.table = table
        self.detail = detail
        super().__init__(f"Schema assertion failed for {table!r}: {detail}")


# ---- branch algebra ----------------------------------------------------
class BranchOperationError(PgBranchError):
    """A statement inside a branch operation failed; the transaction was rolled back."""

    retryable = False

    def __init__(
        self,
        operation: str,
        branch: str,
        original: Optional[BaseException] = None,
        *,
        detail: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.branch = branch
        self.original = original
        msg = detail or (str(original).strip() if original is not None else "failed")
        super().__init__(f"{operation}({branch!r}) failed: {msg}")


class SerializationError(BranchOperationError):
    """The database aborted the transaction to keep it serializable. Safe to retry."""

    retryable = True


class OperationCancelledError(BranchOperationError):
    """The operation was cancelled before commit; nothing was written."""

    def __init__(
        self,
        operation: str,
        branch: str,
        reason: str = "cancelled",
        original: Optional[BaseException] = None,
    ) -> None:
        self.reason = reason
        super().__init__(operation, branch, original, detail=f"cancelled ({reason})")


class RollbackError(BranchOperationError):
    """
    Rollback failed after a statement error.

    Raised ``from`` the statement error, which stays the root cause;
    the rollback failure itself is on ``.rollback_error``.
    """

    def __init__(
        self,
        operation: str,
        branch: str,
        rollback_error: BaseException,
        original: BaseException,
    ) -> None:
        self.rollback_error = rollback_error
        super().__init__(
            operation,
            branch,
            original,
            detail=f"rollback failed ({rollback_error}) after: {original}",
        )


# ---- record gateway ----------------------------------------------------
class GatewayError(PgBranchError):
    """Raised by a record gateway for failures it detects itself."""


class RecordNotFoundError(GatewayError, KeyError):
    """No record for (file, key) in the bound branch."""

    def __init__(self, file: str, key: str, branch: str) -> None:
        self.file = file
        self.key = key
        self.branch = branch
        super().__init__(f"record ({file!r}, {key!r}) not found in branch {branch!r}")

    def __str__(self) -> str:  # KeyError would repr() the message
        return str(self.args[0])


class InvalidIdentifierError(GatewayError, ValueError):
    """A file name, key or branch name is empty or longer than its column."""

    def __init__(self, field: str, value: str, limit: int) -> None:
        self.field = field
        self.value = value
        self.limit = limit
        super().__init__(f"{field} must be 1..{limit} characters, got {len(value)}")
