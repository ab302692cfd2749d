"""Tests for structured-output validation of AI reports."""
import json

import pytest

from derm_service.errors import AIResponseError, SchemaValidationError
from derm_service.mock_analysis import generate_mock_report
from derm_service.context_assembler import ClinicalContext
from derm_service.report_validation import (
    format_error_path,
    validate_diagnosis_report,
    validate_photo_report,
)


class TestValidatePhotoReport:
    """Test validate_photo_report."""

    def test_valid_dict(self, photo_report_dict):
        report = validate_photo_report(photo_report_dict)
        assert report.urgency_level == "urgent"
        assert report.lesions[0].size_mm == 7.5

    def test_valid_fenced_text(self, photo_report_dict):
        text = "```json\n" + json.dumps(photo_report_dict) + "\n```"
        assert validate_photo_report(text).confidence_score == 0.72

    def test_missing_field_names_path(self, photo_report_dict):
        del photo_report_dict["clinical_recommendation"]
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_photo_report(photo_report_dict)
        assert "clinical_recommendation" in exc_info.value.message
        assert exc_info.value.errors[0]["path"] == "clinical_recommendation"

    def test_four_differential_entries_rejected(self, photo_report_dict):
        entry = {"condition": "Seborrheic keratosis", "likelihood": "low", "reasoning": "Stuck-on look"}
        photo_report_dict["diagnostic_diff"] += [entry, entry]
        assert len(photo_report_dict["diagnostic_diff"]) == 4
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_photo_report(photo_report_dict)
        assert exc_info.value.errors[0]["path"] == "diagnostic_diff"

    def test_three_differential_entries_accepted(self, photo_report_dict):
        photo_report_dict["diagnostic_diff"].append(
            {"condition": "Seborrheic keratosis", "likelihood": "low", "reasoning": "Stuck-on look"}
        )
        assert len(validate_photo_report(photo_report_dict).diagnostic_diff) == 3

    def test_confidence_out_of_range(self, photo_report_dict):
        photo_report_dict["confidence_score"] = 1.2
        with pytest.raises(SchemaValidationError, match="confidence_score"):
            validate_photo_report(photo_report_dict)

    def test_negative_size_rejected(self, photo_report_dict):
        photo_report_dict["lesions"][0]["size_mm"] = -1
        with pytest.raises(SchemaValidationError) as exc_info:
            validate_photo_report(photo_report_dict)
        assert exc_info.value.errors[0]["path"] == "lesions.0.size_mm"

    def test_unknown_urgency_rejected(self, photo_report_dict):
        photo_report_dict["urgency_level"] = "soon"
        with pytest.raises(SchemaValidationError, match="urgency_level"):
            validate_photo_report(photo_report_dict)

    def test_unknown_likelihood_rejected(self, photo_report_dict):
        photo_report_dict["diagnostic_diff"][0]["likelihood"] = "certain"
        with pytest.raises(SchemaValidationError, match="diagnostic_diff.0.likelihood"):
            validate_photo_report(photo_report_dict)

    def test_non_object_json_rejected(self):
        with pytest.raises(AIResponseError):
            validate_photo_report("[1, 2, 3]")

    def test_schema_error_is_an_ai_response_error(self, photo_report_dict):
        del photo_report_dict["lesions"]
        with pytest.raises(AIResponseError):
            validate_photo_report(photo_report_dict)

    def test_mock_report_passes(self):
        report = generate_mock_report(ClinicalContext(chief_complaint="itchy rash"))
        assert validate_photo_report(report.model_dump()) == report


class TestValidateDiagnosisReport:
    """Test validate_diagnosis_report."""

    def test_valid(self, diagnosis_report_dict):
        report = validate_diagnosis_report(json.dumps(diagnosis_report_dict))
        assert report.diagnostic_diff[0].label == "Dysplastic nevus"

    def test_long_differential_allowed(self, diagnosis_report_dict):
        diagnosis_report_dict["diagnostic_diff"] = [
            {"label": f"Condition {i}", "likelihood": "low"} for i in range(6)
        ]
        assert len(validate_diagnosis_report(diagnosis_report_dict).diagnostic_diff) == 6

    def test_missing_safety_net(self, diagnosis_report_dict):
        del diagnosis_report_dict["safety_net"]
        with pytest.raises(SchemaValidationError, match="safety_net"):
            validate_diagnosis_report(diagnosis_report_dict)


class TestFormatErrorPath:

    def test_nested(self):
        assert format_error_path(("lesions", 0, "size_mm")) == "lesions.0.size_mm"

    def test_root(self):
        assert format_error_path(()) == "<root>"
