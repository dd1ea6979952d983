"""
Error handlers: map :class:`~tether.core.errors.TetherError` to RFC 7807.

==========================  ======
Error                       Status
==========================  ======
``ValidationError``         400
``AuthError``               401
``NotFound``                404
``ClientError`` (upstream)  502
``IntegrationUnavailable``  503
``ConfigError``             503
anything else               500
==========================  ======

Upstream failures (``NETWORK`` and ``CLIENT`` categories) answer with a fixed
``detail`` and the provider tag only; method, URL and upstream body stay in
the logs.
"""

from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse

from tether.api.schemas import ProblemDetail
from tether.core.errors import ErrorCategory, IntegrationUnavailable, TetherError
from tether.core.logging import get_logger

logger = get_logger(__name__)

CATEGORY_TO_STATUS: dict[ErrorCategory, int] = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.AUTH: 401,
    ErrorCategory.SOURCE: 404,
    ErrorCategory.CLIENT: 502,
    ErrorCategory.NETWORK: 503,
    ErrorCategory.CONFIG: 503,
    ErrorCategory.INTERNAL: 500,
}

UNAVAILABLE_DETAIL = "Integration unavailable. Try again later."
REJECTED_DETAIL = "The upstream integration rejected the request."

GENERIC_DETAILS: dict[ErrorCategory, str] = {
    ErrorCategory.NETWORK: UNAVAILABLE_DETAIL,
    ErrorCategory.CLIENT: REJECTED_DETAIL,
}


def status_for_error(error: TetherError) -> int:
    if isinstance(error, IntegrationUnavailable):
        return 503
    return CATEGORY_TO_STATUS.get(error.category, 500)


def public_detail(error: TetherError) -> str:
    if isinstance(error, IntegrationUnavailable):
        return UNAVAILABLE_DETAIL
    return GENERIC_DETAILS.get(error.category, error.message)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    category: str | None = None,
    provider: str | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        category=category,
        provider=provider,
    )
    return JSONResponse(status_code=status, content=body.model_dump())


async def tether_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if not isinstance(exc, TetherError):
        return await unhandled_exception_handler(request, exc)
    status = status_for_error(exc)
    logger.warning(
        "api.error",
        path=request.url.path,
        status=status,
        error_type=type(exc).__name__,
        error=exc.message,
        context=exc.context.to_dict(),
    )
    return problem_response(
        status=status,
        title=type(exc).__name__,
        detail=public_detail(exc),
        instance=str(request.url),
        category=exc.category.value,
        provider=exc.context.provider,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions: 500 with ProblemDetail."""
    logger.error("api.unhandled", path=request.url.path, error_type=type(exc).__name__, exc_info=exc)
    return problem_response(
        status=500,
        title="Internal Server Error",
        detail="An unexpected error occurred.",
        instance=str(request.url),
    )


__all__ = [
    "problem_response",
    "public_detail",
    "status_for_error",
    "tether_error_handler",
    "unhandled_exception_handler",
]
