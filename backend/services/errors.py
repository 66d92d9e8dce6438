from enum import Enum


class ErrorKind(str, Enum):
    already_pending = "already_pending"
    already_connected = "already_connected"
    not_authorized = "not_authorized"
    invalid_state = "invalid_state"
    backend_unavailable = "backend_unavailable"
    not_found = "not_found"


class ConnectionRuleError(Exception):
    """Base class for failures of a connection operation."""

    kind: ErrorKind
    status_code: int = 400
    default_message = "Connection operation failed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @classmethod
    def from_kind(cls, kind: ErrorKind | str, message: str | None = None):
        try:
            error_class = ERRORS_BY_KIND[ErrorKind(kind)]
        except (KeyError, ValueError):
            error_class = BackendUnavailable
        return error_class(message)


class AlreadyPending(ConnectionRuleError):
    kind = ErrorKind.already_pending
    status_code = 409
    default_message = "A connection request is already pending."


class AlreadyConnected(ConnectionRuleError):
    kind = ErrorKind.already_connected
    status_code = 409
    default_message = "You are already connected with this user."


class NotAuthorized(ConnectionRuleError):
    kind = ErrorKind.not_authorized
    status_code = 403
    default_message = "You are not allowed to do this."


class InvalidState(ConnectionRuleError):
    kind = ErrorKind.invalid_state
    status_code = 409
    default_message = "The connection does not allow this transition."


class NotFound(ConnectionRuleError):
    kind = ErrorKind.not_found
    status_code = 404
    default_message = "Connection not found."


class BackendUnavailable(ConnectionRuleError):
    kind = ErrorKind.backend_unavailable
    status_code = 503
    default_message = "The backend is unavailable."


ERRORS_BY_KIND: dict[ErrorKind, type[ConnectionRuleError]] = {
    error_class.kind: error_class
    for error_class in (
        AlreadyPending,
        AlreadyConnected,
        NotAuthorized,
        InvalidState,
        NotFound,
        BackendUnavailable,
    )
}
