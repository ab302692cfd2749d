"""
Error taxonomy for the analysis service.

Domain modules raise ServiceError subclasses; main.py renders them as
JSON bodies with at least an "error" string and a machine-readable "code".
"""
from typing import Any, Optional

ERROR_CODES = {
    # Authentication errors
    "UNAUTHORIZED": "UNAUTHORIZED",
    "ACCESS_DENIED": "ACCESS_DENIED",
    # Validation errors
    "MISSING_PARAMETERS": "MISSING_PARAMETERS",
    "INVALID_IMAGE": "INVALID_IMAGE",
    "CONSULTATION_NOT_FOUND": "CONSULTATION_NOT_FOUND",
    # AI service errors
    "AI_RATE_LIMIT": "AI_RATE_LIMIT",
    "AI_TIMEOUT": "AI_TIMEOUT",
    "AI_SERVICE_ERROR": "AI_SERVICE_ERROR",
    "AI_CONFIGURATION_ERROR": "AI_CONFIGURATION_ERROR",
    "AI_RESPONSE_INVALID": "AI_RESPONSE_INVALID",
    # Persistence errors
    "DATABASE_ERROR": "DATABASE_ERROR",
    "STORAGE_ERROR": "STORAGE_ERROR",
    # General errors
    "INTERNAL_ERROR": "INTERNAL_ERROR",
}

PREVIEW_CHARS = 200


def truncate_preview(text: Optional[str], limit: int = PREVIEW_CHARS) -> str:
    """Shorten upstream text so it can be logged or echoed safely."""
    if not text:
        return ""
    text = str(text)
    return text if len(text) <= limit else text[:limit] + "..."


class ServiceError(Exception):
    """Base error carrying an HTTP status and a stable error code."""

    status_code = 500
    code = ERROR_CODES["INTERNAL_ERROR"]

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.details)
        return body


# --- Input validation -------------------------------------------------------

class InputValidationError(ServiceError):
    status_code = 400
    code = ERROR_CODES["MISSING_PARAMETERS"]


class ImageCountError(InputValidationError):
    """Raised before any outbound call when the image count is outside 1-5."""


class InvalidImageError(ServiceError):
    status_code = 422
    code = ERROR_CODES["INVALID_IMAGE"]


# --- Authorization ----------------------------------------------------------

class AuthenticationError(ServiceError):
    status_code = 401
    code = ERROR_CODES["UNAUTHORIZED"]


class AccessDeniedError(ServiceError):
    status_code = 403
    code = ERROR_CODES["ACCESS_DENIED"]


class ConsultationNotFoundError(ServiceError):
    status_code = 404
    code = ERROR_CODES["CONSULTATION_NOT_FOUND"]


# --- Upstream AI ------------------------------------------------------------

class AIError(ServiceError):
    """Failure talking to a model provider.

    ``retryable`` decides whether the retry loop may try again.
    ``attempts`` is filled in by the retry loop before re-raising.
    """

    status_code = 502
    code = ERROR_CODES["AI_SERVICE_ERROR"]
    retryable = True

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.attempts = 0


class AIServiceError(AIError):
    pass


class AIRateLimitError(AIError):
    status_code = 429
    code = ERROR_CODES["AI_RATE_LIMIT"]

    def __init__(self, message: str, retry_after: int = 60, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
        self.details.setdefault("retry_after", retry_after)


class AITimeoutError(AIError):
    status_code = 504
    code = ERROR_CODES["AI_TIMEOUT"]


class AIResponseError(AIError):
    """Model answered but the content is unusable (refusal, no JSON, bad schema)."""

    code = ERROR_CODES["AI_RESPONSE_INVALID"]


class AIConfigurationError(AIError):
    """Missing or rejected credentials. Never retried."""

    status_code = 503
    code = ERROR_CODES["AI_CONFIGURATION_ERROR"]
    retryable = False


class UpstreamImageRejectedError(AIError, InvalidImageError):
    """Provider refused one of the images. Never retried."""

    status_code = 422
    code = ERROR_CODES["INVALID_IMAGE"]
    retryable = False


class SchemaValidationError(AIResponseError):
    """Candidate report failed the structured-output contract."""

    def __init__(self, message: str, errors: Optional[list[dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []


# --- Persistence ------------------------------------------------------------

class PersistenceError(ServiceError):
    status_code = 500
    code = ERROR_CODES["DATABASE_ERROR"]


class StorageError(ServiceError):
    status_code = 422
    code = ERROR_CODES["STORAGE_ERROR"]
