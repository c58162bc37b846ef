"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import (
    ForbiddenError,
    NotAuthenticatedError,
    RoleRequiredError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
        return JSONResponse(
            status_code=401,
            content=error_response(
                ErrorCodes.NOT_AUTHENTICATED,
                str(exc) or "Authentication required",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(RoleRequiredError)
    async def role_required_handler(request: Request, exc: RoleRequiredError):
        # Distinct from a generic 403: the client routes to onboarding on this
        return JSONResponse(
            status_code=403,
            content=error_response(
                ErrorCodes.ROLE_REQUIRED,
                str(exc) or "Select a role to continue",
                details={"needsRole": True},
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ForbiddenError)
    async def forbidden_handler(request: Request, exc: ForbiddenError):
        return JSONResponse(
            status_code=403,
            content=error_response(
                ErrorCodes.FORBIDDEN,
                str(exc) or "Not available for your role",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(UpstreamUnavailableError)
    async def upstream_unavailable_handler(request: Request, exc: UpstreamUnavailableError):
        logger.warning("Upstream unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content=error_response(
                ErrorCodes.UPSTREAM_UNAVAILABLE,
                "A required service is temporarily unavailable. Please try again.",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        message = str(exc)
        if "not found" in message.lower():
            return JSONResponse(
                status_code=404,
                content=error_response(ErrorCodes.NOT_FOUND, message).model_dump(mode="json"),
            )
        return JSONResponse(
            status_code=400,
            content=error_response(ErrorCodes.INVALID_REQUEST, message).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                "; ".join(_format_validation_error(err) for err in exc.errors()),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
            ).model_dump(mode="json"),
        )


def _format_validation_error(err: dict) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
    message = err.get("msg", "invalid value")
    return f"{location}: {message}" if location else message
