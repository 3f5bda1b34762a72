"""Error kinds for metacrud.

Every request-path failure is a single ResultError carrying an HTTP status,
a message, and optionally the field names it concerns. Pipeline stages raise
it fully formed; the HTTP binding serializes it verbatim.

ConfigurationError is reserved for definition and startup time.
"""

from typing import Any


class ConfigurationError(Exception):
    """Invalid controller metadata, definitions, or settings."""


class ResultError(Exception):
    """A failed result with an HTTP status code and message.

    Attributes:
        status_code: HTTP status (400, 403, 404, ...)
        message: Human-readable message
        fields: Field names the error relates to (validation detail)
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        fields: list[str] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.fields = list(fields) if fields else []

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status_code,
            "message": self.message,
        }
        if self.fields:
            data["fields"] = self.fields
        return data

    def __repr__(self) -> str:
        return f"ResultError({self.status_code}, {self.message!r})"


def bad_request(message: str, fields: list[str] | None = None) -> ResultError:
    """Malformed or missing parameter."""
    return ResultError(400, message, fields)


def validation_failed(message: str, fields: list[str]) -> ResultError:
    """Missing mandatory field(s) or a failed custom validator."""
    return ResultError(400, message, fields)


def not_found(message: str = "Not found") -> ResultError:
    return ResultError(404, message)


def forbidden(message: str = "Forbidden") -> ResultError:
    return ResultError(403, message)


def ensure(condition: Any, status_code: int, message: str) -> None:
    """Raise a ResultError with the given status unless condition holds."""
    if not condition:
        raise ResultError(status_code, message)


def ensure_allowed(allowed: bool, message: str = "Forbidden") -> None:
    """Permission assertion for route handlers and guards."""
    ensure(allowed, 403, message)
