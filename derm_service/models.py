"""
Pydantic request/response models for the dermatology analysis API.

The report bodies (PhotoAnalysisReport, DiagnosisReport) are the structured
output contract shared by the live model path and the mock path.
"""
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

Likelihood = Literal["high", "moderate", "low"]
UrgencyLevel = Literal["immediate", "urgent", "routine", "monitoring"]

MAX_DIFFERENTIAL_ENTRIES = 3
MIN_IMAGES = 1
MAX_IMAGES = 5


# --- Photo analysis report ---

class Lesion(BaseModel):
    location: str
    morphology: str
    size_mm: Optional[float] = Field(default=None, ge=0)
    borders: Optional[str] = None
    features: list[str] = Field(default_factory=list)


class DifferentialDiagnosisEntry(BaseModel):
    condition: str
    likelihood: Likelihood
    reasoning: str


class PhotoAnalysisReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lesions: list[Lesion]
    diagnostic_diff: list[DifferentialDiagnosisEntry] = Field(max_length=MAX_DIFFERENTIAL_ENTRIES)
    red_flags: list[str]
    recommended_exams: list[str]
    treatment_hints: list[str]
    urgency_level: UrgencyLevel
    confidence_score: float = Field(ge=0.0, le=1.0)
    clinical_recommendation: str


# --- Diagnosis report ---

class DiagnosisEntry(BaseModel):
    label: str
    likelihood: Likelihood


class DiagnosisReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    diagnostic_diff: list[DiagnosisEntry]
    red_flags: list[str]
    recommended_exams: list[str]
    treatment_hints: list[str]
    safety_net: str
    explainability: str


# --- Requests ---

class AnalysisOptions(BaseModel):
    model: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    maxTokens: Optional[int] = Field(default=None, gt=0, le=8192)


class PatientContextInput(BaseModel):
    """Free-form context a caller may send with a photo analysis."""

    model_config = ConfigDict(extra="ignore")

    patient_age: Optional[int] = Field(default=None, ge=0)
    patient_gender: Optional[str] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[list[str] | str] = None
    medical_history: Optional[list[str] | str] = None
    current_medications: Optional[str] = None
    allergies: Optional[list[str] | str] = None
    duration: Optional[str] = None


class PhotoAnalysisRequest(BaseModel):
    consultation_id: Optional[str] = None
    photo_urls: Optional[list[str]] = None
    photo_storage_paths: Optional[list[str]] = None
    context: PatientContextInput = Field(default_factory=PatientContextInput)
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class DiagnosisRequest(BaseModel):
    consultation_id: str
    state_id: Optional[str] = None
    photo_report_id: Optional[str] = None

    @field_validator("consultation_id")
    @classmethod
    def consultation_id_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("consultation_id is required")
        return v.strip()


# --- Responses ---

class PhotoAnalysisMetadata(BaseModel):
    report_id: Optional[str] = None
    latency_ms: int
    estimated_cost_usd: float
    model: str
    prompt_version: str
    images_analyzed: int
    timestamp: str
    saved_to_database: bool
    user_authenticated: bool
    is_service: bool
    source: Literal["model", "mock"]
    attempts: int
    disclaimer: str


class PhotoAnalysisResponse(BaseModel):
    success: bool = True
    analysis: PhotoAnalysisReport
    metadata: PhotoAnalysisMetadata


class DataSources(BaseModel):
    consultation_data: bool = True
    photo_analysis: bool = False
    clinical_state: bool = False


class DiagnosisMetadata(BaseModel):
    latency_ms: int
    cost_usd: float
    model: str
    prompt_version: str
    data_sources: DataSources


class DiagnosisResponse(BaseModel):
    diagnosis_report_id: str
    report: DiagnosisReport
    metadata: DiagnosisMetadata


class ReportListResponse(BaseModel):
    reports: list[dict[str, Any]]
