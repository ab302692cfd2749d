"""
Structured-output validation for AI reports.

Single source of truth for what counts as a valid photo analysis or
diagnosis report. Accepts either an already-parsed dict or raw model text
(code fences and surrounding prose are trimmed, nothing else is repaired).
"""
import logging
from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .errors import SchemaValidationError
from .json_utils import extract_json
from .models import DiagnosisReport, PhotoAnalysisReport

logger = logging.getLogger(__name__)

ReportT = TypeVar("ReportT", bound=BaseModel)


def format_error_path(loc: tuple) -> str:
    """Turn a pydantic error location into a dotted path like lesions.0.size_mm."""
    return ".".join(str(part) for part in loc) or "<root>"


def _describe_errors(exc: ValidationError) -> list[dict[str, Any]]:
    described = []
    for err in exc.errors():
        described.append({
            "path": format_error_path(err.get("loc", ())),
            "message": err.get("msg", "invalid value"),
            "type": err.get("type", "value_error"),
        })
    return described


def _validate(candidate: Union[str, dict], schema: Type[ReportT], label: str) -> ReportT:
    if isinstance(candidate, str):
        # AIResponseError from extract_json already says what was wrong
        candidate = extract_json(candidate)
    if not isinstance(candidate, dict):
        raise SchemaValidationError(
            f"{label} must be a JSON object, got {type(candidate).__name__}",
            errors=[{"path": "<root>", "message": "expected object", "type": "type_error"}],
        )

    try:
        return schema.model_validate(candidate)
    except ValidationError as e:
        errors = _describe_errors(e)
        first = errors[0]
        summary = f"{label} failed validation at '{first['path']}': {first['message']}"
        if len(errors) > 1:
            summary += f" (+{len(errors) - 1} more)"
        logger.warning(summary)
        raise SchemaValidationError(summary, errors=errors) from e


def validate_photo_report(candidate: Union[str, dict]) -> PhotoAnalysisReport:
    """Validate a photo analysis report candidate.

    Enforces enum membership for likelihood and urgency, confidence in
    [0, 1], non-negative lesion sizes and at most 3 differential entries.
    """
    return _validate(candidate, PhotoAnalysisReport, "Photo analysis report")


def validate_diagnosis_report(candidate: Union[str, dict]) -> DiagnosisReport:
    """Validate a global diagnosis report candidate."""
    return _validate(candidate, DiagnosisReport, "Diagnosis report")
