import enum
import logging
import uuid
from types import MappingProxyType
from typing import Any, Mapping, Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.platform.response import api_response


class ErrorKind(str, enum.Enum):
    """Failure categories surfaced by the screenshot pipeline."""

    VALIDATION = "validation"
    CLIENT_ERROR = "client_error"
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    UPSTREAM = "upstream"
    MALFORMED_RESPONSE = "malformed_response"
    JOB_FAILED = "job_failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS_BY_KIND[self]


_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.RATE_LIMIT_EXCEEDED,
        ErrorKind.UPSTREAM,
        ErrorKind.MALFORMED_RESPONSE,
        ErrorKind.TIMEOUT,
    }
)

_HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CLIENT_ERROR: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTH: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.RATE_LIMITED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.MALFORMED_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.JOB_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.CANCELLED: status.HTTP_409_CONFLICT,
    ErrorKind.CONFIGURATION: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def new_correlation_id() -> str:
    return uuid.uuid4().hex


class BrowserstackError(Exception):
    """
    Typed failure raised by the screenshot pipeline.

    Carries the error kind, a human readable message, the HTTP status that
    caused it (if any), the correlation id of the originating request and an
    optional read-only context mapping. Instances are immutable.
    """

    __slots__ = ("_kind", "_message", "_status_code", "_correlation_id", "_context")

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        status_code: Optional[int] = None,
        correlation_id: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(message)
        object.__setattr__(self, "_kind", ErrorKind(kind))
        object.__setattr__(self, "_message", message)
        object.__setattr__(self, "_status_code", status_code)
        object.__setattr__(self, "_correlation_id", correlation_id or new_correlation_id())
        object.__setattr__(self, "_context", MappingProxyType(dict(context or {})))

    def __setattr__(self, name, value):
        # __traceback__, __cause__ and friends live on BaseException itself
        if name.startswith("__"):
            return super().__setattr__(name, value)
        raise AttributeError(f"{type(self).__name__} is immutable")

    @property
    def kind(self) -> ErrorKind:
        return self._kind

    @property
    def message(self) -> str:
        return self._message

    @property
    def status_code(self) -> Optional[int]:
        return self._status_code

    @property
    def correlation_id(self) -> str:
        return self._correlation_id

    @property
    def context(self) -> Mapping[str, Any]:
        return self._context

    @property
    def retryable(self) -> bool:
        return self._kind.retryable

    def to_dict(self) -> dict:
        return {
            "kind": self._kind.value,
            "message": self._message,
            "status_code": self._status_code,
            "correlation_id": self._correlation_id,
            "retryable": self.retryable,
            "context": dict(self._context),
        }

    def __repr__(self) -> str:
        return (
            f"BrowserstackError(kind={self._kind.value!r}, message={self._message!r}, "
            f"status_code={self._status_code!r}, correlation_id={self._correlation_id!r})"
        )


def add_exception_handlers(app):
    @app.exception_handler(BrowserstackError)
    async def browserstack_exception_handler(request: Request, exc: BrowserstackError):
        return api_response(
            message=exc.message,
            status_code=exc.kind.http_status,
            data=exc.to_dict(),
            headers={"X-Correlation-ID": exc.correlation_id},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return api_response(message=str(exc.detail) or "Error", status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return api_response(
            message="Validation failed",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            data={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logging.exception(f"Unhandled exception: {exc}")
        return api_response(
            message="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
