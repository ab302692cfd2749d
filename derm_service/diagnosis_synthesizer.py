"""
Diagnosis Synthesizer - text-only Gemini call that merges consultation data,
the clinical state and the latest photo analysis into one differential
diagnosis report.

There is no mock fallback here: when the model cannot produce a valid report
after the retries, the typed error propagates to the caller.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .config import Settings
from .context_assembler import ClinicalContext
from .errors import (
    AIConfigurationError,
    AIRateLimitError,
    AIResponseError,
    AIServiceError,
    AITimeoutError,
    truncate_preview,
)
from .formatters import format_clinical_text, format_patient_context, format_photo_findings
from .models import DiagnosisReport
from .prompts import DIAGNOSIS_PROMPT, DIAGNOSIS_PROMPT_VERSION, DIAGNOSIS_SYSTEM_PROMPT
from .report_validation import validate_diagnosis_report
from .retry import RetryPolicy, SleepFn, call_with_retry

logger = logging.getLogger(__name__)


@dataclass
class SynthesisResult:
    report: DiagnosisReport
    latency_ms: int
    attempts: int
    model: str
    prompt_version: str = DIAGNOSIS_PROMPT_VERSION


def build_diagnosis_prompt(context: ClinicalContext) -> str:
    return DIAGNOSIS_PROMPT.format(
        patient_context=format_patient_context(context),
        clinical_text=format_clinical_text(context.clinical_text),
        photo_findings=format_photo_findings(context.photo_findings),
    )


def _classify_api_error(e: genai_errors.APIError) -> Exception:
    code = getattr(e, "code", None)
    message = truncate_preview(getattr(e, "message", None) or str(e))
    logger.error(f"Gemini API error: {code} - {message}")
    if code in (401, 403):
        return AIConfigurationError("Diagnosis model credentials were rejected")
    if code == 429:
        return AIRateLimitError("Diagnosis model rate limit reached")
    if code in (408, 504):
        return AITimeoutError(f"Diagnosis model timed out upstream ({code})")
    return AIServiceError(f"Diagnosis model request failed ({code})")


class DiagnosisSynthesizer:
    """Gemini-backed differential diagnosis generator."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[Any] = None,
        sleep: Optional[SleepFn] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_key = settings.diagnosis_api_key
        self.model = settings.diagnosis_model
        self.temperature = settings.diagnosis_temperature
        self.max_tokens = settings.diagnosis_max_tokens
        self.timeout = settings.diagnosis_timeout_seconds
        self.policy = RetryPolicy(
            max_retries=settings.ai_max_retries,
            base_delay=settings.ai_retry_base_delay,
            max_delay=settings.ai_retry_max_delay,
        )
        self.client = client
        self._sleep = sleep
        self._clock = clock

    def _get_client(self):
        """Create the Gemini client on first use."""
        if self.client is None:
            if not self.api_key:
                raise AIConfigurationError("Diagnosis model API key is not configured")
            timeout_ms = int(self.timeout * 1000)
            self.client = genai.Client(
                api_key=self.api_key,
                http_options=types.HttpOptions(timeout=timeout_ms),
            )
            logger.info(f"Gemini client initialized with model: {self.model} (timeout: {self.timeout}s)")
        return self.client

    async def _generate_once(self, client, prompt: str) -> DiagnosisReport:
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self.model,
                    contents=prompt,
                    config=types.GenerateContentConfig(
                        system_instruction=DIAGNOSIS_SYSTEM_PROMPT,
                        temperature=self.temperature,
                        max_output_tokens=self.max_tokens,
                        response_mime_type="application/json",
                    ),
                ),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise AITimeoutError(f"Diagnosis model did not answer within {self.timeout:.0f}s") from e
        except genai_errors.APIError as e:
            raise _classify_api_error(e) from e
        except httpx.RequestError as e:
            logger.error(f"Gemini connection error: {e}")
            raise AIServiceError("Diagnosis model connection failed") from e

        text = getattr(response, "text", None)
        if not text or not text.strip():
            raise AIResponseError("Diagnosis model returned an empty response")
        return validate_diagnosis_report(text)

    async def synthesize(self, context: ClinicalContext) -> SynthesisResult:
        """Generate a diagnosis report. Raises a typed AIError on failure."""
        client = self._get_client()
        prompt = build_diagnosis_prompt(context)

        logger.info(
            f"Synthesizing diagnosis with {self.model} "
            f"(photo findings: {context.photo_findings is not None}, "
            f"clinical notes: {bool(context.clinical_text)})"
        )
        start = self._clock()

        async def attempt(n: int) -> DiagnosisReport:
            return await self._generate_once(client, prompt)

        report, attempts = await call_with_retry(
            attempt,
            self.policy,
            operation_name=f"diagnosis synthesis ({self.model})",
            sleep=self._sleep,
        )
        latency_ms = int((self._clock() - start) * 1000)
        logger.info(f"Diagnosis synthesized in {latency_ms}ms after {attempts} attempt(s)")
        return SynthesisResult(report=report, latency_ms=latency_ms, attempts=attempts, model=self.model)
