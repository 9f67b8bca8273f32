"""Custom middleware and exception handlers for API request/response processing."""

from typing import Callable, Optional

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.errors import (
    AlreadyLinkedError,
    ConflictError,
    DomainError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
    PermissionDeniedError,
    SelfLinkError,
    ValidationError,
)
from ..utils.logging_config import get_logger, log_exception

logger = get_logger("api")

# Most specific first; subclasses of InvalidTransitionError fall through to 409
DOMAIN_ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN, "Forbidden"),
    (ConflictError, status.HTTP_409_CONFLICT, "Conflict"),
    (AlreadyLinkedError, status.HTTP_409_CONFLICT, "Already Linked"),
    (InvalidTransitionError, status.HTTP_409_CONFLICT, "Invalid Transition"),
    (LimitExceededError, status.HTTP_429_TOO_MANY_REQUESTS, "Limit Exceeded"),
    (SelfLinkError, status.HTTP_400_BAD_REQUEST, "Bad Request"),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation Error"),
]


class ProblemDetailsException(HTTPException):
    """Enhanced HTTPException that includes RFC 9457 Problem Details."""

    def __init__(
        self,
        status_code: int,
        title: str,
        detail: Optional[str] = None,
        type_uri: Optional[str] = None,
        instance: Optional[str] = None,
        **extra_fields,
    ):
        super().__init__(status_code=status_code, detail=detail)
        self.title = title
        self.type_uri = type_uri or f"https://httpstatuses.com/{status_code}"
        self.instance = instance
        self.extra_fields = extra_fields


def problem_response(
    status_code: int,
    title: str,
    detail: Optional[str] = None,
    type_uri: Optional[str] = None,
    instance: Optional[str] = None,
    **extra_fields,
) -> JSONResponse:
    """Create a JSON response in RFC 9457 Problem Details format."""
    problem = {
        "type": type_uri or f"https://httpstatuses.com/{status_code}",
        "title": title,
        "status": status_code,
    }

    if detail:
        problem["detail"] = detail
    if instance:
        problem["instance"] = instance

    # Add any extra fields
    problem.update(extra_fields)

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(problem),
        media_type="application/problem+json",
    )


def _default_title(status_code: int) -> str:
    """Get default title for HTTP status codes."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        409: "Conflict",
        413: "Payload Too Large",
        422: "Unprocessable Entity",
        429: "Too Many Requests",
        500: "Internal Server Error",
    }
    return titles.get(status_code, "HTTP Error")


def domain_error_status(exc: DomainError) -> tuple:
    for error_type, status_code, title in DOMAIN_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code, title
    return status.HTTP_400_BAD_REQUEST, "Bad Request"


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code, title = domain_error_status(exc)
    logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}")
    extra = {}
    if isinstance(exc, AlreadyLinkedError) and exc.existing_relationship_id:
        extra["existing_relationship_id"] = exc.existing_relationship_id
    return problem_response(
        status_code=status_code,
        title=title,
        detail=exc.message,
        instance=str(request.url),
        code=exc.code,
        retryable=exc.retryable,
        **extra,
    )


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    return problem_response(
        status_code=exc.status_code,
        title=exc.title,
        detail=exc.detail,
        type_uri=exc.type_uri,
        instance=exc.instance or str(request.url),
        **exc.extra_fields,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    response = problem_response(
        status_code=exc.status_code,
        title=_default_title(exc.status_code),
        detail=exc.detail,
        instance=str(request.url),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return problem_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        title="Validation Error",
        detail="Request validation failed",
        instance=str(request.url),
        code=ValidationError.code,
        retryable=False,
        errors=exc.errors(),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain and HTTP errors as Problem Details."""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


class ProblemDetailsMiddleware(BaseHTTPMiddleware):
    """Turns errors raised by other middleware, or unhandled ones, into Problem Details."""

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            response = await call_next(request)
            return response
        except ProblemDetailsException as exc:
            return await problem_details_handler(request, exc)
        except DomainError as exc:
            return await domain_error_handler(request, exc)
        except Exception as exc:
            log_exception("api", exc, {"method": request.method, "path": request.url.path})
            return problem_response(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                title="Internal Server Error",
                detail="An unexpected error occurred",
                instance=str(request.url),
            )


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce request size limits."""

    def __init__(self, app: ASGIApp, request_limit: int = 16 * 1024):  # 16KB
        super().__init__(app)
        self.request_limit = request_limit

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Check Content-Length header first
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                length = int(content_length)
            except ValueError:
                raise ProblemDetailsException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    title="Bad Request",
                    detail="Invalid Content-Length header",
                )
            if length > self.request_limit:
                raise ProblemDetailsException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    title="Request Entity Too Large",
                    detail=f"Request size {length} bytes exceeds limit of {self.request_limit} bytes",
                    type_uri="https://datatracker.ietf.org/doc/html/rfc7231#section-6.5.11",
                )

        return await call_next(request)
