"""
Photo analysis pipeline.

Stage 1 asks the vision model. Stage 2 (mock report) only runs when stage 1
ran out of retries on a transient failure; credential problems and rejected
images are the caller's to handle. The outcome is tagged with its source so
nobody mistakes a mock report for a model one.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Literal, Optional

from .access_guard import Principal
from .context_assembler import ClinicalContext
from .cost_estimation import estimate_vision_cost
from .errors import AIError, AuthenticationError, InputValidationError, InvalidImageError, StorageError
from .input_sanitization import (
    SUPPORTED_IMAGE_FORMATS,
    check_image_url,
    has_supported_extension,
    url_path,
)
from .mock_analysis import MOCK_MODEL_NAME, generate_mock_report
from .models import AnalysisOptions, PhotoAnalysisReport
from .persistence import PhotoStorage
from .prompts import PHOTO_PROMPT_VERSION
from .structured_logging import MOCK_FALLBACK_USED, log_medical_event
from .vision_client import VisionAnalysisClient, validate_image_count

logger = logging.getLogger(__name__)

Source = Literal["model", "mock"]


@dataclass
class AnalysisOutcome:
    report: PhotoAnalysisReport
    source: Source
    latency_ms: int
    attempts: int
    model: str
    prompt_version: str
    estimated_cost_usd: float
    error_code: Optional[str] = None


def _unsupported_format(reference: str) -> InvalidImageError:
    return InvalidImageError(
        "Unsupported image format",
        details={"image": reference, "supported_formats": SUPPORTED_IMAGE_FORMATS},
    )


def check_photo_urls(photo_urls: list[str], allowed_hosts: tuple[str, ...]) -> list[str]:
    """Validate caller-supplied image URLs. Returns them stripped."""
    cleaned = []
    for url in photo_urls:
        reason = check_image_url(url, allowed_hosts)
        if reason is not None:
            raise InputValidationError(f"Invalid image URL: {reason}", details={"image": url})
        url = url.strip()
        if not has_supported_extension(url_path(url)):
            raise _unsupported_format(url)
        cleaned.append(url)
    return cleaned


async def sign_storage_paths(
    paths: list[str],
    consultation_id: str,
    storage: PhotoStorage,
    expires_in: int,
) -> list[str]:
    """Turn bucket paths under the consultation prefix into signed URLs."""
    prefix = f"{consultation_id}/"
    signed = []
    for path in paths:
        normalized = path.strip().lstrip("/")
        if not normalized.startswith(prefix):
            raise InputValidationError(
                "Storage paths must belong to the consultation",
                details={"path": path, "expected_prefix": prefix},
            )
        if not has_supported_extension(normalized, required=True):
            raise _unsupported_format(path)
        signed.append(await storage.create_signed_url(normalized, expires_in))
    return signed


async def resolve_image_urls(
    *,
    photo_urls: Optional[list[str]],
    photo_storage_paths: Optional[list[str]],
    consultation_id: Optional[str],
    principal: Principal,
    storage: PhotoStorage,
    allowed_hosts: tuple[str, ...],
    signed_url_ttl: int,
) -> tuple[list[str], list[str]]:
    """Return (urls to send to the model, references to store with the report).

    Exactly one of photo_urls / photo_storage_paths must be given. Storage
    paths are only accepted from an authenticated caller with a
    consultation; the caller checks access to that consultation.
    """
    if bool(photo_urls) == bool(photo_storage_paths):
        raise InputValidationError("Provide exactly one of photo_urls or photo_storage_paths")

    references = list(photo_urls or photo_storage_paths)
    validate_image_count(references)

    if photo_urls:
        urls = check_photo_urls(photo_urls, allowed_hosts)
        return urls, urls

    if not principal.is_authenticated:
        raise AuthenticationError("Authentication required to analyze stored photos")
    if not consultation_id:
        raise InputValidationError("consultation_id is required with photo_storage_paths")

    try:
        urls = await sign_storage_paths(references, consultation_id, storage, signed_url_ttl)
    except StorageError:
        logger.warning(f"Could not sign storage paths for consultation {consultation_id}")
        raise
    return urls, references


class PhotoAnalysisPipeline:
    def __init__(self, vision_client: VisionAnalysisClient, clock: Callable[[], float] = time.monotonic):
        self.vision_client = vision_client
        self._clock = clock

    async def run(
        self,
        image_urls: list[str],
        context: ClinicalContext,
        options: Optional[AnalysisOptions] = None,
        consultation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> AnalysisOutcome:
        start = self._clock()
        try:
            result = await self.vision_client.analyze(image_urls, context, options)
        except AIError as e:
            if not e.retryable:
                raise
            report = generate_mock_report(context)
            latency_ms = int((self._clock() - start) * 1000)
            logger.warning(
                f"Vision analysis failed after {e.attempts} attempt(s) ({e.code}); "
                "returning mock report"
            )
            log_medical_event(
                MOCK_FALLBACK_USED,
                consultation_id,
                user_id,
                error_code=e.code,
                attempts=e.attempts,
                urgency_level=report.urgency_level,
            )
            return AnalysisOutcome(
                report=report,
                source="mock",
                latency_ms=latency_ms,
                attempts=e.attempts,
                model=MOCK_MODEL_NAME,
                prompt_version=PHOTO_PROMPT_VERSION,
                estimated_cost_usd=0.0,
                error_code=e.code,
            )

        return AnalysisOutcome(
            report=result.report,
            source="model",
            latency_ms=result.latency_ms,
            attempts=result.attempts,
            model=result.model,
            prompt_version=result.prompt_version,
            estimated_cost_usd=estimate_vision_cost(result.model, len(image_urls)),
        )
