from typing import Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class PersonalizationError(Exception):
    """Base class for errors raised by the personalization services."""
    status_code = 500


class ValidationError(PersonalizationError):
    """Missing or malformed input. Fails fast, never retried."""
    status_code = 400


class RateLimitError(PersonalizationError):
    """Caller exceeded its per-user request budget for the current window."""
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(PersonalizationError):
    """A mandatory resource (e.g. the article behind a Q&A request) does not exist."""
    status_code = 404


class UpstreamProviderError(PersonalizationError):
    """A text-generation provider failed. `retryable` decides whether failover is allowed."""
    status_code = 502

    def __init__(self, message: str, provider: Optional[str] = None, retryable: bool = False):
        super().__init__(message)
        self.provider = provider
        self.retryable = retryable


def error_response(error: PersonalizationError) -> JSONResponse:
    """Translate a service error into the HTTP response the routers return."""
    if isinstance(error, RateLimitError):
        return JSONResponse(
            status_code=error.status_code,
            content={"error": str(error), "retryAfter": error.retry_after},
            headers={"Retry-After": str(error.retry_after)},
        )
    return JSONResponse(status_code=error.status_code, content={"error": str(error)})


def validation_error_response(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are input errors too: 400 with the offending fields."""
    problems = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{field}: {error['msg']}" if field else error["msg"])
    return JSONResponse(status_code=400, content={"error": f"Invalid request: {'; '.join(problems)}"})
