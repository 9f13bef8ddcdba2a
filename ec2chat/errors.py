"""
Error taxonomy shared by the instance monitor, the chat relay and titles.

Boundary calls that are allowed to fail softly return a ``Result`` so the
caller picks the fallback value. Relay failures that must reach the HTTP
layer are raised as ``RelayError`` subclasses carrying a status code and a
short message that is safe to show to the user.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    AUTH = "auth"
    PRECONDITION = "precondition"
    UPSTREAM = "upstream"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error: Optional[ErrorKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str = "") -> "Result[T]":
        return cls(error=kind, detail=detail)

    def unwrap_or(self, default: T) -> T:
        """Return the value, or *default* when the call failed."""
        if self.ok and self.value is not None:
            return self.value
        return default


class RelayError(Exception):
    """Base error for a chat request that cannot be served."""

    kind: ErrorKind = ErrorKind.UPSTREAM
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ServiceUnavailableError(RelayError):
    """The EC2 instance is not running or has no public address."""

    kind = ErrorKind.PRECONDITION
    status_code = 503


class MissingCredentialError(RelayError):
    """A required upstream credential is not configured."""

    kind = ErrorKind.PRECONDITION
    status_code = 500


class UpstreamError(RelayError):
    """The upstream model service failed or returned a non-2xx status."""

    kind = ErrorKind.UPSTREAM
    status_code = 500
