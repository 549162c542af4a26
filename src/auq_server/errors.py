"""Global exception handlers — map SDK exceptions to HTTP status codes.

Routes call the SDK and let its exceptions propagate; the handlers below
pick the status code from the exception type.  Starlette resolves handlers
along the exception's MRO, so the specific SDK classes win over the
``ValueError`` fallback.

  QuestionValidationError                    -> 422 (with the issue list)
  SessionTimeoutError                        -> 504
  LockTimeoutError                           -> 503
  SessionNotFoundError, InvalidSessionIdError -> 404
  SessionStateError                          -> 409
  other ValueError                           -> 400
  anything else                              -> 500
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from auq_sessions.exceptions import (
    InvalidSessionIdError,
    LockTimeoutError,
    QuestionValidationError,
    SessionNotFoundError,
    SessionStateError,
    SessionTimeoutError,
)

logger = logging.getLogger(__name__)


async def question_validation_handler(
    request: Request, exc: QuestionValidationError,
) -> JSONResponse:
    """Bad question payload — the issues are safe to return verbatim."""
    logger.warning("Rejected question payload at %s: %s", request.url, exc)
    return JSONResponse(
        status_code=422,
        content={"detail": "Invalid questions", "issues": exc.issues},
    )


async def session_timeout_handler(request: Request, exc: SessionTimeoutError) -> JSONResponse:
    logger.warning("Session timed out at %s: %s", request.url, exc)
    return JSONResponse(
        status_code=504,
        content={"detail": str(exc), "sessionId": exc.session_id},
    )


async def lock_timeout_handler(request: Request, exc: LockTimeoutError) -> JSONResponse:
    """Session files are contended; the client may retry."""
    logger.warning("Lock timeout at %s: %s", request.url, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Session storage is busy, retry later"},
    )


async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning("Not found at %s: %s", request.url, exc)
    return JSONResponse(status_code=404, content={"detail": "Session not found"})


async def state_error_handler(request: Request, exc: SessionStateError) -> JSONResponse:
    logger.warning("State conflict at %s: %s", request.url, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    logger.warning("ValueError at %s: %s", request.url, exc)
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — log full traceback, return 500."""
    logger.exception("Unhandled exception at %s", request.url)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(QuestionValidationError, question_validation_handler)
    app.add_exception_handler(SessionTimeoutError, session_timeout_handler)
    app.add_exception_handler(LockTimeoutError, lock_timeout_handler)
    app.add_exception_handler(SessionNotFoundError, not_found_handler)
    app.add_exception_handler(InvalidSessionIdError, not_found_handler)
    app.add_exception_handler(SessionStateError, state_error_handler)
    app.add_exception_handler(ValueError, value_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
