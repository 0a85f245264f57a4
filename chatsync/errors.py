class ChatError(Exception):
    """Base error for chat operations; carries a stable code for API responses."""

    code = "chat_error"
    status_code = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthenticated(ChatError):

    code = "unauthenticated"
    status_code = 401

    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(message)


class InvalidArgument(ChatError):

    code = "invalid_argument"
    status_code = 400


class Forbidden(ChatError):

    code = "forbidden"
    status_code = 403


class NotFound(ChatError):

    code = "not_found"
    status_code = 404


class StoreFailure(ChatError):

    code = "store_failure"
    status_code = 502


class DuplicateKey(StoreFailure):
    """Unique index rejected an insert."""

    code = "duplicate_key"
    status_code = 409


class PartialCreateFailure(StoreFailure):
    """Multi-step creation aborted after the first row; compensation already ran."""

    code = "partial_create_failure"
