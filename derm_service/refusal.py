"""
Refusal detection for vision model output.

Vision models sometimes decline to look at clinical photographs
("I'm sorry, I can't help with that.") instead of returning the JSON
report. Those answers are reported as a distinct, retryable failure so the
logs say "refused" rather than "no JSON found".
"""
import re

REFUSAL_PATTERNS = [
    r"(?:^|\n)\s*(?:I'm|I am) sorry,?[^.]*\.\s*",
    r"(?:^|\n)\s*(?:I cannot|I can't|I can not) (?:help|assist|analy[sz]e|provide|identify|diagnose)[^.]*\.\s*",
    r"(?:^|\n)\s*(?:I am|I'm) (?:unable|not able) to (?:help|assist|analy[sz]e|provide|identify|diagnose)[^.]*\.\s*",
    r"(?:^|\n)\s*(?:I am|I'm) (?:a |an )?(?:large )?(?:language model|AI|artificial intelligence)[^.]*\.\s*",
    r"(?:^|\n)\s*As an AI(?:\s+language model)?[^.]*\.\s*",
    r"(?:^|\n)\s*(?:It is (?:essential|important) to |Please |Always )?consult (?:with )?(?:a |your )?(?:qualified )?(?:dermatologist|healthcare|medical) ?(?:professional|provider|doctor)?[^.]*\.\s*",
    r"(?:^|\n)\s*(?:Je suis désolé|Désolé)[^.]*\.\s*",
    r"(?:^|\n)\s*Je ne (?:peux|suis) pas[^.]*\.\s*",
]


def is_pure_refusal(text: str) -> bool:
    """True when the output is only refusal boilerplate and holds no JSON.

    Any output containing a '{' is left to the JSON/schema checks.
    """
    if not text or not text.strip():
        return True
    if "{" in text:
        return False

    cleaned = text
    for pattern in REFUSAL_PATTERNS:
        cleaned = re.sub(pattern, "\n", cleaned, flags=re.IGNORECASE)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()

    # Less than 50 chars left means there was no real content
    return len(cleaned) < 50
