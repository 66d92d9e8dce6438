from dataclasses import dataclass

from models.connection import ConnectionRecord
from services.errors import ConnectionRuleError, ErrorKind


@dataclass(frozen=True)
class Result:
    """Outcome of a client operation: a record on success, an error kind otherwise."""

    ok: bool
    record: ConnectionRecord | None = None
    error: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def success(cls, record: ConnectionRecord | None = None, message: str | None = None):
        return cls(ok=True, record=record, message=message)

    @classmethod
    def failure(cls, error: ErrorKind, message: str | None = None):
        return cls(ok=False, error=error, message=message)

    @classmethod
    def from_error(cls, error: ConnectionRuleError):
        return cls.failure(error.kind, error.message)

    def __bool__(self):
        return self.ok
