"""
workflows/errors.py

Error taxonomy shared by every workflow operation.

Each error carries an :class:`ErrorKind` tag and a human-readable message.
The subclasses also derive from the closest builtin exception, so callers
that only care about "not allowed" or "missing" can catch ``PermissionError``
or ``LookupError`` directly.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    unauthenticated = "unauthenticated"
    forbidden = "forbidden"
    not_verified = "not_verified"
    not_found = "not_found"
    conflict = "conflict"
    invalid_state = "invalid_state"
    expired = "expired"


class WorkflowError(Exception):
    """Base class for every error a workflow operation can raise."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r})"


class Unauthenticated(WorkflowError, PermissionError):
    """No user is mapped to the caller identity."""
    kind = ErrorKind.unauthenticated


class Forbidden(WorkflowError, PermissionError):
    """The caller's role is not permitted to perform the operation."""
    kind = ErrorKind.forbidden


class NotVerified(WorkflowError, PermissionError):
    """The caller's credentials have not been approved by the admin."""
    kind = ErrorKind.not_verified


class NotFound(WorkflowError, LookupError):
    kind = ErrorKind.not_found


class Conflict(WorkflowError, ValueError):
    """Duplicate pending verification, duplicate pool, second admin, ..."""
    kind = ErrorKind.conflict


class InvalidState(WorkflowError, ValueError):
    kind = ErrorKind.invalid_state


class Expired(WorkflowError, ValueError):
    """The pool's deadline has passed."""
    kind = ErrorKind.expired
