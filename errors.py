from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    validation = "validation"
    not_found = "not_found"
    conflict = "conflict"


class LedgerError(ValueError):
    """
    Base for every rejected ledger operation.

    ``kind`` is the tag callers branch on; ``field`` names the offending input
    when there is one.
    """

    kind: ErrorKind = ErrorKind.validation

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class ValidationError(LedgerError):
    kind = ErrorKind.validation


class NotFoundError(LedgerError):
    kind = ErrorKind.not_found


class ConflictError(LedgerError):
    kind = ErrorKind.conflict
