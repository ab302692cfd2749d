"""
Vision Analysis Client - HTTP client for a multimodal chat completions API.

Sends the clinical photographs (as image_url content parts) together with a
fixed prompt embedding the patient context, and returns a validated
PhotoAnalysisReport. Transient failures are retried with exponential
backoff; credential problems fail immediately.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

from .config import Settings
from .context_assembler import ClinicalContext
from .errors import (
    AIConfigurationError,
    AIRateLimitError,
    AIResponseError,
    AIServiceError,
    AITimeoutError,
    ImageCountError,
    UpstreamImageRejectedError,
    truncate_preview,
)
from .formatters import format_clinical_text, format_patient_context
from .models import MAX_IMAGES, MIN_IMAGES, AnalysisOptions, PhotoAnalysisReport
from .prompts import DERMATOLOGY_SYSTEM_PROMPT, PHOTO_ANALYSIS_PROMPT, PHOTO_PROMPT_VERSION
from .refusal import is_pure_refusal
from .report_validation import validate_photo_report
from .retry import RetryPolicy, SleepFn, call_with_retry

logger = logging.getLogger(__name__)

CHAT_COMPLETIONS_PATH = "/v1/chat/completions"
DEFAULT_RETRY_AFTER_SECONDS = 60


@dataclass
class VisionResult:
    report: PhotoAnalysisReport
    latency_ms: int
    attempts: int
    model: str
    prompt_version: str = PHOTO_PROMPT_VERSION


def validate_image_count(image_urls: list[str]) -> None:
    """Reject empty or oversized image sets before any network activity."""
    count = len(image_urls or [])
    if count < MIN_IMAGES:
        raise ImageCountError("At least one image is required for analysis")
    if count > MAX_IMAGES:
        raise ImageCountError(
            f"Maximum {MAX_IMAGES} images per analysis",
            details={"images_received": count, "max_images": MAX_IMAGES},
        )


def _parse_retry_after(response: httpx.Response) -> int:
    raw = response.headers.get("retry-after")
    try:
        return max(1, int(float(raw)))
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_SECONDS


def _extract_error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an OpenAI-style error payload."""
    try:
        payload = response.json()
    except ValueError:
        return truncate_preview(response.text)
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            parts = [str(error.get(k)) for k in ("code", "type", "message") if error.get(k)]
            return truncate_preview(" | ".join(parts))
        if isinstance(error, str):
            return truncate_preview(error)
    return truncate_preview(response.text)


class VisionAnalysisClient:
    """Client for the vision model behind the photo analysis endpoint."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[SleepFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.base_url = settings.vision_api_base_url.rstrip("/")
        self.api_key = settings.vision_api_key
        self.model = settings.vision_model
        self.temperature = settings.vision_temperature
        self.max_tokens = settings.vision_max_tokens
        self.timeout = settings.vision_timeout_seconds
        self.policy = RetryPolicy(
            max_retries=settings.ai_max_retries,
            base_delay=settings.ai_retry_base_delay,
            max_delay=settings.ai_retry_max_delay,
        )
        self.client = http_client or httpx.AsyncClient(timeout=self.timeout)
        self._sleep = sleep
        self._clock = clock

    def build_messages(self, image_urls: list[str], context: ClinicalContext) -> list[dict]:
        """System prompt + one user message: text part then one part per image."""
        prompt = PHOTO_ANALYSIS_PROMPT.format(
            patient_context=format_patient_context(context),
            clinical_text=format_clinical_text(context.clinical_text),
            image_count=len(image_urls),
        )
        user_content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for url in image_urls:
            user_content.append({
                "type": "image_url",
                "image_url": {"url": url, "detail": "high"},
            })
        return [
            {"role": "system", "content": DERMATOLOGY_SYSTEM_PROMPT},
            {"role": "user", "content": user_content},
        ]

    async def _post(self, payload: dict) -> httpx.Response:
        try:
            return await asyncio.wait_for(
                self.client.post(
                    f"{self.base_url}{CHAT_COMPLETIONS_PATH}",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise AITimeoutError(f"Vision model did not answer within {self.timeout:.0f}s") from e
        except httpx.RequestError as e:
            logger.error(f"Vision API connection error: {e}")
            raise AIServiceError("Vision model connection failed") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status < 400:
            return

        message = _extract_error_message(response)
        logger.error(f"Vision API HTTP error: {status} - {message}")

        if status in (401, 403):
            raise AIConfigurationError("Vision model credentials were rejected")
        if status == 429:
            raise AIRateLimitError("Vision model rate limit reached", retry_after=_parse_retry_after(response))
        if status in (400, 422) and "image" in message.lower():
            raise UpstreamImageRejectedError(
                "Image format rejected by the vision model",
                details={"supported_formats": ["JPEG", "PNG", "WebP", "GIF"]},
            )
        if status in (408, 504):
            raise AITimeoutError(f"Vision model timed out upstream ({status})")
        raise AIServiceError(f"Vision model request failed ({status})")

    async def _request_once(self, messages: list[dict], model: str, temperature: float, max_tokens: int) -> PhotoAnalysisReport:
        response = await self._post({
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "response_format": {"type": "json_object"},
        })
        self._raise_for_status(response)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIResponseError("Vision model returned an unexpected payload") from e
        if not isinstance(content, str):
            raise AIResponseError("Vision model returned no text content")

        if is_pure_refusal(content):
            logger.warning(f"Vision model refused the analysis: {truncate_preview(content)}")
            raise AIResponseError("Vision model declined to analyze the images")

        return validate_photo_report(content)

    async def analyze(
        self,
        image_urls: list[str],
        context: ClinicalContext,
        options: Optional[AnalysisOptions] = None,
    ) -> VisionResult:
        """Analyze 1-5 images. Raises a typed AIError once retries are exhausted."""
        validate_image_count(image_urls)
        if not self.api_key:
            raise AIConfigurationError("Vision model API key is not configured")

        options = options or AnalysisOptions()
        model = options.model or self.model
        temperature = options.temperature if options.temperature is not None else self.temperature
        max_tokens = options.maxTokens or self.max_tokens
        messages = self.build_messages(image_urls, context)

        logger.info(f"Analyzing {len(image_urls)} image(s) with {model}...")
        start = self._clock()

        async def attempt(n: int) -> PhotoAnalysisReport:
            return await self._request_once(messages, model, temperature, max_tokens)

        report, attempts = await call_with_retry(
            attempt,
            self.policy,
            operation_name=f"vision analysis ({model})",
            sleep=self._sleep,
        )
        latency_ms = int((self._clock() - start) * 1000)
        logger.info(f"Vision analysis complete in {latency_ms}ms after {attempts} attempt(s)")
        return VisionResult(report=report, latency_ms=latency_ms, attempts=attempts, model=model)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
