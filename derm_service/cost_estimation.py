"""
Cost estimates for model calls (USD).

These are rough per-request figures for reporting, not billing: vision calls
are priced per image plus a flat text component, diagnosis calls at a flat
rate per request.
"""
from dataclasses import dataclass

DEFAULT_PRICING_KEY = "default"


@dataclass(frozen=True)
class VisionPricing:
    """Price for one vision request"""
    per_image: float
    text_processing: float
    notes: str = ""


@dataclass(frozen=True)
class TextPricing:
    """Flat price for one text-only request"""
    per_request: float
    notes: str = ""


VISION_MODEL_PRICING = {
    "gpt-4o": VisionPricing(0.01, 0.005, "OpenAI multimodal"),
    "gpt-4o-mini": VisionPricing(0.003, 0.001, "OpenAI multimodal, cheaper"),
    "gpt-4.1": VisionPricing(0.008, 0.004, "OpenAI multimodal"),
    DEFAULT_PRICING_KEY: VisionPricing(0.01, 0.005, "Unknown model, priced as gpt-4o"),
}

DIAGNOSIS_MODEL_PRICING = {
    "gemini-2.5-flash": TextPricing(0.002, "Google - fast"),
    "gemini-2.5-pro": TextPricing(0.01, "Google - high capability"),
    "gpt-4o-mini": TextPricing(0.002, "OpenAI - cheap text"),
    DEFAULT_PRICING_KEY: TextPricing(0.002),
}


def estimate_vision_cost(model: str, num_images: int) -> float:
    """images * per_image + text_processing, rounded to 1/10000 USD."""
    pricing = VISION_MODEL_PRICING.get(model, VISION_MODEL_PRICING[DEFAULT_PRICING_KEY])
    return round(max(num_images, 0) * pricing.per_image + pricing.text_processing, 4)


def estimate_diagnosis_cost(model: str) -> float:
    pricing = DIAGNOSIS_MODEL_PRICING.get(model, DIAGNOSIS_MODEL_PRICING[DEFAULT_PRICING_KEY])
    return pricing.per_request
