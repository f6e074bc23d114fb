"""Global error hierarchy and FastAPI exception handlers.

All bridge-specific errors extend BridgeError. Errors that must never be
retried additionally mix in FatalError. The FastAPI exception handlers catch
these errors (plus Pydantic's RequestValidationError and unhandled exceptions)
and return a consistent JSON envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from arenabridge.models.responses import ApiResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class BridgeError(Exception):
    """Base error for all bridge-specific errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class FatalError:
    """Marker mixin: the retry orchestrator re-raises these immediately."""


class ValidationError(BridgeError, FatalError):
    """Pydantic / payload validation failures with field-level details."""

    status_code = 422
    message = "Validation error"


class InvalidPromptError(ValidationError):
    """Prompt is empty or whitespace only."""

    message = "Prompt must not be empty"


class InvalidProxyError(ValidationError):
    """Proxy URL could not be parsed."""

    message = "Invalid proxy format. Use protocol://host:port or host:port"


class ProxyNotFoundError(BridgeError, FatalError):
    """Proxy id is not in the catalog."""

    status_code = 404
    message = "Proxy not found"


class ProxyExhaustedError(BridgeError):
    """No usable proxy is available."""

    status_code = 503
    message = "No usable proxy available"


class ProxySourceError(BridgeError):
    """Every configured proxy source failed."""

    status_code = 502
    message = "All proxy sources failed"


class NavigationFailedError(BridgeError):
    """Every profile/path combination failed to reach an interactive page."""

    status_code = 502
    message = "Navigation failed for every profile and path"


class CaptchaUnresolvedError(BridgeError):
    """A challenge page persisted after the resolution attempt."""

    status_code = 502
    message = "Captcha challenge could not be resolved"


class ModelSelectionFailedError(BridgeError):
    """Requested model could not be selected. Never terminal for a session."""

    status_code = 200
    message = "Model selection failed"


class SubmissionFailedError(BridgeError):
    """Prompt input or send control could not be found or used."""

    status_code = 502
    message = "Prompt submission failed"


class ResponseTimeoutError(BridgeError):
    """No matching response arrived and the replay fallback failed."""

    status_code = 504
    message = "Timed out waiting for the chat response"


class ResourceAcquisitionFailedError(BridgeError):
    """Page pool exhausted or the browser rotation lock is held."""

    status_code = 503
    message = "Could not acquire a browser page"


class CancellationRequestedError(BridgeError, FatalError):
    """The caller aborted or the request deadline expired."""

    status_code = 504
    message = "Request cancelled"


class RetryExhaustedError(BridgeError):
    """Every retry attempt failed. ``last_error`` holds the final failure."""

    status_code = 502
    message = "All retry attempts failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        attempts: int,
        last_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            attempts=attempts,
            last_error=str(last_error) if last_error else None,
        )
        self.attempts = attempts
        self.last_error = last_error


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    error: str,
    meta: dict | None = None,
) -> JSONResponse:
    """Build a JSON envelope error response."""
    return JSONResponse(status_code=status_code, content=ApiResponse.fail(error, meta=meta))


async def _bridge_error_handler(_request: Request, exc: BridgeError) -> JSONResponse:
    """Handle BridgeError subclasses."""
    meta = exc.details if exc.details else None
    return _envelope(exc.status_code, exc.message, meta=meta)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI / Pydantic RequestValidationError (422)."""
    field_errors = [
        {
            "field": " -> ".join(str(loc) for loc in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return _envelope(
        status_code=422,
        error="Validation error",
        meta={"fields": field_errors},
    )


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: log the traceback, return a generic 500."""
    logger.error(
        "Unhandled exception: %s\n%s",
        exc,
        traceback.format_exc(),
    )
    return _envelope(status_code=500, error="Internal server error")


# ---------------------------------------------------------------------------
# Registration helper
# ---------------------------------------------------------------------------


def register_error_handlers(app: FastAPI) -> None:
    """Wire up all exception handlers on the FastAPI application."""
    app.add_exception_handler(BridgeError, _bridge_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_error_handler)  # type: ignore[arg-type]
