"""
Clinical context assembly.

Builds one ClinicalContext from the consultation record, a clinical state
snapshot and a prior photo report. The context is rebuilt on every request
and never stored on its own.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Optional, Union

from .errors import ConsultationNotFoundError
from .input_sanitization import sanitize_list, sanitize_text
from .persistence import Consultation, ReportStore

logger = logging.getLogger(__name__)


def as_text_list(value: Union[None, str, list, tuple]) -> list[str]:
    """Normalize a list-or-string field into a clean list of strings.

    Strings are split on commas and semicolons, the way patients type
    "itching, redness".
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = [p for chunk in value.split(";") for p in chunk.split(",")]
        return sanitize_list(parts)
    return sanitize_list(str(v) for v in value if v is not None)


@dataclass
class ClinicalContext:
    """Everything the models get to know about the patient."""

    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    chief_complaint: str = ""
    symptoms: list[str] = field(default_factory=list)
    medical_history: list[str] = field(default_factory=list)
    current_medications: str = ""
    allergies: list[str] = field(default_factory=list)
    duration: Optional[str] = None
    consultation_reason: Optional[str] = None
    clinical_text: dict = field(default_factory=dict)
    photo_findings: Optional[dict] = None

    @classmethod
    def from_mapping(cls, data: Optional[dict]) -> "ClinicalContext":
        """Build a context from loosely typed input (request body, DB row)."""
        data = data or {}
        age = data.get("patient_age")
        if isinstance(age, bool) or not isinstance(age, int) or age < 0:
            age = None
        return cls(
            patient_age=age,
            patient_gender=sanitize_text(data.get("patient_gender"), 50) or None,
            chief_complaint=sanitize_text(data.get("chief_complaint")),
            symptoms=as_text_list(data.get("symptoms")),
            medical_history=as_text_list(data.get("medical_history")),
            current_medications=sanitize_text(data.get("current_medications")),
            allergies=as_text_list(data.get("allergies")),
            duration=sanitize_text(data.get("duration"), 200) or None,
            consultation_reason=sanitize_text(data.get("consultation_reason")) or None,
        )

    @classmethod
    def from_consultation(cls, consultation: Consultation) -> "ClinicalContext":
        return cls.from_mapping(asdict(consultation))

    def overlay(self, other: "ClinicalContext") -> "ClinicalContext":
        """Return a copy where every field set on ``other`` wins."""
        merged = ClinicalContext(**asdict(self))
        for name, value in asdict(other).items():
            if value not in (None, "", [], {}):
                setattr(merged, name, value)
        return merged

    @property
    def has_complaint_data(self) -> bool:
        return bool(self.chief_complaint or self.symptoms)


@dataclass
class AssembledContext:
    context: ClinicalContext
    state_id: Optional[str] = None
    photo_report_id: Optional[str] = None

    @property
    def has_photo_analysis(self) -> bool:
        return self.context.photo_findings is not None

    @property
    def has_clinical_state(self) -> bool:
        return bool(self.context.clinical_text)


class ContextAssembler:
    """Gathers consultation data for a request. Read-only."""

    def __init__(self, store: ReportStore):
        self.store = store

    async def load_consultation(self, consultation_id: str) -> Consultation:
        consultation = await self.store.get_consultation(consultation_id)
        if consultation is None:
            raise ConsultationNotFoundError(
                "Consultation not found",
                details={"consultation_id": consultation_id},
            )
        return consultation

    async def assemble(
        self,
        consultation_id: str,
        state_id: Optional[str] = None,
        photo_report_id: Optional[str] = None,
        overrides: Optional[ClinicalContext] = None,
        consultation: Optional[Consultation] = None,
    ) -> AssembledContext:
        """Resolve the clinical context for a consultation.

        An explicit photo report wins over the most recent one. With no
        explicit reference at all, the latest photo report and the latest
        state are used. Anything missing is simply left empty.
        """
        if consultation is None:
            consultation = await self.load_consultation(consultation_id)

        context = ClinicalContext.from_consultation(consultation)
        result = AssembledContext(context=context)

        if photo_report_id:
            report = await self.store.get_photo_report(consultation_id, photo_report_id)
            if report is not None:
                context.photo_findings = report.report
                result.photo_report_id = report.id
            else:
                logger.info(f"Photo report {photo_report_id} not found for consultation {consultation_id}")

        if state_id:
            state = await self.store.get_state(consultation_id, state_id)
            if state is not None:
                context.clinical_text = state.clinical_text
                result.state_id = state.id
            else:
                logger.info(f"Clinical state {state_id} not found for consultation {consultation_id}")

        if not photo_report_id and not state_id:
            latest_report = await self.store.latest_photo_report(consultation_id)
            if latest_report is not None:
                context.photo_findings = latest_report.report
                result.photo_report_id = latest_report.id
            latest_state = await self.store.latest_state(consultation_id)
            if latest_state is not None:
                context.clinical_text = latest_state.clinical_text
                result.state_id = latest_state.id

        if overrides is not None:
            result.context = context.overlay(overrides)

        return result
