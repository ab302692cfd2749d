"""
Text formatting utilities for clinical data.

Converts ClinicalContext pieces (history lists, prior state, prior photo
findings) into human-readable text for model prompts.
"""
from .context_assembler import ClinicalContext

NOT_SPECIFIED = "Not specified"


def format_list(values: list[str], empty: str = NOT_SPECIFIED) -> str:
    """Comma-join a list, or return a placeholder when it's empty."""
    return ", ".join(values) if values else empty


def format_patient_context(context: ClinicalContext) -> str:
    """Format the patient/complaint part of the context, one field per line."""
    age = f"{context.patient_age} years" if context.patient_age is not None else NOT_SPECIFIED
    lines = [
        f"- Age: {age}",
        f"- Gender: {context.patient_gender or NOT_SPECIFIED}",
        f"- Chief complaint: {context.chief_complaint or NOT_SPECIFIED}",
        f"- Symptoms: {format_list(context.symptoms)}",
    ]
    if context.duration:
        lines.append(f"- Duration / evolution: {context.duration}")
    lines.extend([
        f"- Medical history: {format_list(context.medical_history)}",
        f"- Current medications: {context.current_medications or 'None reported'}",
        f"- Allergies: {format_list(context.allergies, 'None reported')}",
    ])
    if context.consultation_reason:
        lines.append(f"- Reason for consultation: {context.consultation_reason}")
    return "\n".join(lines)


def format_clinical_text(clinical_text: dict) -> str:
    """Format a clinical state snapshot (free-form key/value notes)."""
    lines = []
    for key, value in clinical_text.items():
        label = str(key).replace("_", " ").capitalize()
        if isinstance(value, (list, tuple)):
            value = ", ".join(str(v) for v in value)
        elif isinstance(value, dict):
            value = "; ".join(f"{k}: {v}" for k, v in value.items())
        lines.append(f"- {label}: {value}")
    return "\n".join(lines) if lines else "No clinical notes recorded"


def format_photo_findings(findings: dict | None) -> str:
    """Format a stored photo analysis report for the diagnosis prompt."""
    if not findings:
        return "No photo analysis available"

    lines = []
    for i, lesion in enumerate(findings.get("lesions", []), 1):
        size = lesion.get("size_mm")
        size_text = f", ~{size} mm" if size is not None else ""
        borders = f", borders: {lesion['borders']}" if lesion.get("borders") else ""
        features = format_list(lesion.get("features", []), "none noted")
        lines.append(
            f"Lesion {i}: {lesion.get('location', '?')} - {lesion.get('morphology', '?')}"
            f"{size_text}{borders}; features: {features}"
        )

    diff = findings.get("diagnostic_diff", [])
    if diff:
        lines.append("Image-based differential:")
        for i, dx in enumerate(diff, 1):
            if isinstance(dx, dict):
                lines.append(f"  {i}. {dx.get('condition', 'Unknown')} ({dx.get('likelihood', '?')})")
            else:
                lines.append(f"  {i}. {dx}")

    if findings.get("red_flags"):
        lines.append(f"Red flags: {format_list(findings['red_flags'])}")
    if findings.get("urgency_level"):
        lines.append(f"Urgency: {findings['urgency_level']}")
    if findings.get("confidence_score") is not None:
        lines.append(f"Analysis confidence: {findings['confidence_score']}")
    return "\n".join(lines) if lines else "Photo analysis contained no findings"
