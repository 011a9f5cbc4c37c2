from __future__ import annotations


class QueryValidationError(ValueError):
    """Raised when query string input cannot be turned into a bounded query."""

    kind = "invalid_query"


class InvalidParam(QueryValidationError):
    kind = "invalid_param"

    def __init__(self, param: str, message: str) -> None:
        super().__init__(message)
        self.param = param


class InvalidDate(QueryValidationError):
    kind = "invalid_date"


class InvalidRange(QueryValidationError):
    kind = "invalid_range"


class InvalidGroup(QueryValidationError):
    kind = "invalid_group"


class InvalidAmount(ValueError):
    """Raised by the strict amount policy used for untrusted input."""


class DataIntegrityError(RuntimeError):
    """Raised when persisted data violates an invariant the core relies on."""


class AuthError(Exception):
    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


def unauthorized() -> AuthError:
    return AuthError(401, "Unauthorized")


def forbidden() -> AuthError:
    return AuthError(403, "Forbidden")
