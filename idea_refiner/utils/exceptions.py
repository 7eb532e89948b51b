from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from idea_refiner.config import get_settings
from idea_refiner.utils.logger import get_logger

logger = get_logger("errors")

SNIPPET_CHARS = 200

INVALID_INPUT_MESSAGE = "Please provide a valid idea string"
INVALID_RESPONSE_MESSAGE = "The model returned an unusable plan. Please try again."

# User-safe text keyed by upstream status; anything else reads as unavailable
UPSTREAM_MESSAGES = {
    429: "Too many requests to the AI service. Please wait a moment and try again.",
    400: "The AI service rejected the request as invalid.",
    401: "Authentication error with the AI service.",
    403: "Authentication error with the AI service.",
    404: "The requested AI model was not found.",
}
UPSTREAM_UNAVAILABLE = "The AI service is temporarily unavailable. Please try again later."


def snippet(text: Any, limit: int = SNIPPET_CHARS) -> str:
    if not isinstance(text, str):
        return ""
    return text[:limit]


class RefinerError(Exception):
    status_code = 500
    error = "Internal server error"
    public_message = "An unexpected error occurred"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class InputValidationError(RefinerError):
    status_code = 400
    error = "Invalid input"

    def __init__(self, message: str = INVALID_INPUT_MESSAGE):
        super().__init__(message)

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return self.message


class ConfigurationError(RefinerError):
    error = "Server configuration error"
    public_message = "The AI service is not configured"


class UpstreamError(RefinerError):
    error = "Upstream model error"

    def __init__(self, status: Optional[int], message: str = ""):
        super().__init__(message or f"upstream call failed with status {status}")
        self.status = status

    @property
    def retryable(self) -> bool:
        return self.status is not None and (self.status == 429 or self.status >= 500)

    @property
    def status_code(self) -> int:  # type: ignore[override]
        # Mirror what the upstream reported; an unknown status reads as 500
        if self.status in UPSTREAM_MESSAGES or (self.status is not None and 500 <= self.status < 600):
            return int(self.status)
        return 500

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return UPSTREAM_MESSAGES.get(self.status or 0, UPSTREAM_UNAVAILABLE)


class DispatchCancelled(RefinerError):
    error = "Request cancelled"
    public_message = "The request was cancelled"


class NormalizationError(RefinerError):
    error = "Invalid model response"
    public_message = INVALID_RESPONSE_MESSAGE
    stage = "normalize"


class ExtractionFailure(NormalizationError):
    stage = "extract"

    def __init__(self, raw_text: Any, message: str = "no structured payload found"):
        super().__init__(message)
        self.raw_snippet = snippet(raw_text)


class StructuralFailure(NormalizationError):
    stage = "validate"

    def __init__(self, missing: List[str], invalid: Optional[List[str]] = None):
        self.missing = list(missing)
        self.invalid = list(invalid or [])
        parts = []
        if self.missing:
            parts.append(f"Missing required fields: {', '.join(self.missing)}")
        if self.invalid:
            parts.append(f"Invalid field types: {', '.join(self.invalid)}")
        super().__init__("; ".join(parts) or "invalid response structure")

    @property
    def fields(self) -> List[str]:
        return self.missing + self.invalid


def _payload(error: str, message: str, request_id: str | None, **extra: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {"error": error, "message": message, "request_id": request_id}
    body.update(extra)
    return body


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def refiner_exception_handler(request: Request, exc: RefinerError):
    req_id = _request_id(request)
    log_fields = {
        "event": "refine_error",
        "kind": type(exc).__name__,
        "detail": exc.message,
        "request_id": req_id,
    }
    if isinstance(exc, UpstreamError):
        log_fields["upstream_status"] = exc.status
    if isinstance(exc, ExtractionFailure):
        log_fields["raw_snippet"] = exc.raw_snippet
    if isinstance(exc, StructuralFailure):
        log_fields["fields"] = exc.fields
    level = logger.warning if exc.status_code < 500 else logger.error
    level("request failed", extra={"extra": log_fields})

    extra: Dict[str, Any] = {}
    if get_settings().expose_error_details and isinstance(exc, NormalizationError):
        extra["detail"] = exc.message
        if isinstance(exc, ExtractionFailure):
            extra["rawResponse"] = exc.raw_snippet
    return JSONResponse(
        _payload(exc.error, exc.public_message, req_id, **extra),
        status_code=exc.status_code,
    )


def http_exception_handler(request: Request, exc: StarletteHTTPException):
    detail = exc.detail if isinstance(exc.detail, str) else "HTTP error"
    return JSONResponse(
        _payload(detail or "HTTP error", detail or "HTTP error", _request_id(request)),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.info(
        "request validation failed",
        extra={"extra": {"event": "invalid_input", "errors": exc.errors(), "request_id": _request_id(request)}},
    )
    body_error = any(err.get("loc", ("body",))[0] == "body" for err in exc.errors())
    message = INVALID_INPUT_MESSAGE if body_error else "Invalid request parameters"
    return refiner_exception_handler(request, InputValidationError(message))


def generic_exception_handler(request: Request, exc: Exception):
    logger.error(
        "unhandled error",
        extra={"extra": {"event": "unhandled_error", "request_id": _request_id(request)}},
        exc_info=exc,
    )
    return JSONResponse(
        _payload("Internal server error", "An unexpected error occurred", _request_id(request)),
        status_code=500,
    )
