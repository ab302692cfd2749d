"""Shared fixtures for the derm_service test suite."""
import copy
import json

import pytest

from derm_service.config import Settings

VALID_PHOTO_REPORT = {
    "lesions": [
        {
            "location": "upper back",
            "morphology": "asymmetric pigmented macule",
            "size_mm": 7.5,
            "borders": "irregular",
            "features": ["color variegation", "asymmetry"],
        }
    ],
    "diagnostic_diff": [
        {"condition": "Melanoma", "likelihood": "moderate", "reasoning": "ABCD criteria partly met"},
        {"condition": "Dysplastic nevus", "likelihood": "high", "reasoning": "Irregular but symmetric pigment network"},
    ],
    "red_flags": ["Diameter > 6mm", "Irregular borders"],
    "recommended_exams": ["Dermoscopy", "Excisional biopsy"],
    "treatment_hints": ["Excision with margins if confirmed"],
    "urgency_level": "urgent",
    "confidence_score": 0.72,
    "clinical_recommendation": "Refer to dermatology within two weeks for dermoscopy.",
}

VALID_DIAGNOSIS_REPORT = {
    "diagnostic_diff": [
        {"label": "Dysplastic nevus", "likelihood": "high"},
        {"label": "Melanoma in situ", "likelihood": "moderate"},
    ],
    "red_flags": ["Recent change in color"],
    "recommended_exams": ["Dermoscopy", "Biopsy"],
    "treatment_hints": ["Excisional biopsy"],
    "safety_net": "Return immediately if the lesion bleeds or grows.",
    "explainability": "Photo findings and reported evolution favour a dysplastic lesion.",
}


@pytest.fixture
def photo_report_dict():
    return copy.deepcopy(VALID_PHOTO_REPORT)


@pytest.fixture
def diagnosis_report_dict():
    return copy.deepcopy(VALID_DIAGNOSIS_REPORT)


@pytest.fixture
def settings():
    return Settings(
        vision_api_key="sk-test",
        vision_api_base_url="https://vision.test",
        diagnosis_api_key="gemini-test",
        ai_max_retries=2,
        ai_retry_base_delay=1.0,
        ai_retry_max_delay=8.0,
        service_api_key="service-secret",
        signed_url_secret="test-secret",
        storage_base_url="https://storage.test/clinical-photos",
        log_format="text",
    )


def chat_completion(content: str) -> dict:
    """OpenAI-style chat completion payload wrapping ``content``."""
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}, "finish_reason": "stop"}],
    }


def report_completion(report: dict) -> dict:
    return chat_completion(json.dumps(report))


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
