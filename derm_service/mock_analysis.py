"""
Deterministic fallback report for when the vision model is unavailable.

The output is a pure function of the ClinicalContext: no I/O, no clock, no
randomness. Confidence is pinned low so nobody mistakes it for a real
analysis.
"""
import re

from .context_assembler import ClinicalContext
from .models import PhotoAnalysisReport

MOCK_CONFIDENCE = 0.3
MOCK_MODEL_NAME = "mock-fallback"

GENERIC_TEXT = "Clinical evaluation required"

# (pattern, red flag text) - English and French wording, matched case-insensitively.
# Negated forms ("painless", "no pain", "sans douleur") must not match.
ALARM_KEYWORDS: list[tuple[re.Pattern, str]] = [
    (
        re.compile(r"\brapid(?:ly)?\s+(?:grow\w*|evol\w*|chang\w*)"
                   r"|\b(?:grow(?:s|ing|n)?|evolv(?:es|ing)|chang(?:es|ing))\s+(?:fast|quickly|rapidly)\b"
                   r"|croissance\s+rapide|évolution\s+rapide|grossit\s+vite", re.IGNORECASE),
        "Rapid evolution of the lesion reported: urgent dermatological assessment needed",
    ),
    (
        re.compile(r"\bbleed|\bblood|\bsaign", re.IGNORECASE),
        "Bleeding lesion: rule out malignancy or ulceration",
    ),
    (
        re.compile(r"(?<!\bno )\bpain(?:s|ful)?\b(?!-free)|(?<!sans )\bdouleur|\bdouloureu", re.IGNORECASE),
        "Painful lesion: assess for infection or deep involvement",
    ),
    (
        re.compile(r"\bspread(?:s|ing)?\b|s'étend|s'étale", re.IGNORECASE),
        "Spreading lesion: assess for infection or progressive disease",
    ),
]


def _context_texts(context: ClinicalContext) -> list[str]:
    texts = list(context.symptoms)
    if context.chief_complaint:
        texts.append(context.chief_complaint)
    if context.duration:
        texts.append(context.duration)
    return texts


def detect_red_flags(context: ClinicalContext) -> list[str]:
    """Red flags triggered by alarm keywords, in fixed keyword order."""
    texts = _context_texts(context)
    flags = []
    for pattern, flag in ALARM_KEYWORDS:
        if any(pattern.search(text) for text in texts):
            flags.append(flag)
    return flags


def generate_mock_report(context: ClinicalContext) -> PhotoAnalysisReport:
    """Build a schema-valid, low-confidence report from the context alone."""
    if not context.has_complaint_data:
        return PhotoAnalysisReport(
            lesions=[{
                "location": GENERIC_TEXT,
                "morphology": GENERIC_TEXT,
                "features": [],
            }],
            diagnostic_diff=[{
                "condition": GENERIC_TEXT,
                "likelihood": "low",
                "reasoning": "Automated image analysis unavailable and no clinical information provided",
            }],
            red_flags=[],
            recommended_exams=["In-person dermatological examination"],
            treatment_hints=[GENERIC_TEXT],
            urgency_level="routine",
            confidence_score=MOCK_CONFIDENCE,
            clinical_recommendation=(
                "Automated analysis could not be performed. A clinician must review "
                "the photographs before any conclusion is drawn."
            ),
        )

    red_flags = detect_red_flags(context)
    urgent = bool(red_flags)
    complaint = context.chief_complaint or ", ".join(context.symptoms[:3])
    features = context.symptoms[:5]

    lesions = [{
        "location": "As described by the patient",
        "morphology": f"Lesion reported as: {complaint}",
        "features": features,
    }]

    if urgent:
        diagnostic_diff = [
            {
                "condition": "Lesion with alarm features requiring exclusion of malignancy",
                "likelihood": "moderate",
                "reasoning": "Alarm features reported in the symptom history",
            },
            {
                "condition": "Inflammatory or infectious dermatosis",
                "likelihood": "low",
                "reasoning": "Possible given the reported symptoms, not confirmed by image analysis",
            },
        ]
        recommended_exams = ["Dermoscopy", "Biopsy if the lesion persists or evolves"]
        treatment_hints = ["Avoid manipulating the lesion until examined"]
        recommendation = (
            "Alarm features were reported. Arrange a dermatological consultation promptly. "
            "This report was generated without image analysis."
        )
    else:
        diagnostic_diff = [
            {
                "condition": "Benign dermatosis",
                "likelihood": "low",
                "reasoning": "No alarm features reported; image analysis unavailable",
            },
        ]
        recommended_exams = ["Dermatological examination", "Dermoscopy if clinically indicated"]
        treatment_hints = ["Symptomatic care pending clinical review"]
        recommendation = (
            "No alarm features were reported. Schedule a routine dermatological review. "
            "This report was generated without image analysis."
        )

    return PhotoAnalysisReport(
        lesions=lesions,
        diagnostic_diff=diagnostic_diff,
        red_flags=red_flags,
        recommended_exams=recommended_exams,
        treatment_hints=treatment_hints,
        urgency_level="urgent" if urgent else "routine",
        confidence_score=MOCK_CONFIDENCE,
        clinical_recommendation=recommendation,
    )
