"""
Persistence gateway and photo storage.

The relational store and the object store are external services; the
pipeline only talks to them through the ReportStore and PhotoStorage
protocols below. The in-memory implementations back local runs and tests.
Report rows are insert-only: a new analysis adds a row, nothing is updated.
"""
import asyncio
import copy
import hashlib
import hmac
import itertools
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol
from urllib.parse import quote, urlencode

from .errors import PersistenceError, StorageError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Consultation:
    id: str
    patient_id: str
    doctor_id: Optional[str] = None
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    chief_complaint: Optional[str] = None
    symptoms: Optional[list[str]] = None
    medical_history: Optional[list[str]] = None
    current_medications: Optional[str] = None
    allergies: Optional[str] = None
    consultation_reason: Optional[str] = None
    status: str = "active"


@dataclass
class ConsultationState:
    id: str
    consultation_id: str
    clinical_text: dict = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class StoredPhotoReport:
    id: str
    consultation_id: str
    model: str
    prompt_version: str
    input_photos: list[str]
    report: dict
    latency_ms: int
    cost_usd: float
    source: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


@dataclass
class StoredDiagnosisReport:
    id: str
    consultation_id: str
    model: str
    prompt_version: str
    input_refs: dict
    report: dict
    latency_ms: int
    cost_usd: float
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class ReportStore(Protocol):
    async def get_consultation(self, consultation_id: str) -> Optional[Consultation]: ...

    async def get_state(self, consultation_id: str, state_id: str) -> Optional[ConsultationState]: ...

    async def latest_state(self, consultation_id: str) -> Optional[ConsultationState]: ...

    async def get_photo_report(self, consultation_id: str, report_id: str) -> Optional[StoredPhotoReport]: ...

    async def latest_photo_report(self, consultation_id: str) -> Optional[StoredPhotoReport]: ...

    async def list_photo_reports(self, consultation_id: str) -> list[StoredPhotoReport]: ...

    async def list_diagnosis_reports(self, consultation_id: str) -> list[StoredDiagnosisReport]: ...

    async def insert_photo_report(
        self,
        *,
        consultation_id: str,
        model: str,
        prompt_version: str,
        input_photos: list[str],
        report: dict,
        latency_ms: int,
        cost_usd: float,
        source: str,
    ) -> StoredPhotoReport: ...

    async def insert_diagnosis_report(
        self,
        *,
        consultation_id: str,
        model: str,
        prompt_version: str,
        input_refs: dict,
        report: dict,
        latency_ms: int,
        cost_usd: float,
    ) -> StoredDiagnosisReport: ...


class InMemoryReportStore:
    """Dict-backed ReportStore.

    Ids and timestamps are assigned here, like a database would. Stored and
    returned payloads are deep copies so callers can't mutate rows.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._seq = itertools.count()
        self.consultations: dict[str, Consultation] = {}
        self.states: dict[str, tuple[int, ConsultationState]] = {}
        self.photo_reports: dict[str, tuple[int, StoredPhotoReport]] = {}
        self.diagnosis_reports: dict[str, tuple[int, StoredDiagnosisReport]] = {}

    # Seeding helpers (the real store is populated by other parts of the app)

    def add_consultation(self, consultation: Consultation) -> Consultation:
        self.consultations[consultation.id] = consultation
        return consultation

    def add_state(
        self,
        consultation_id: str,
        clinical_text: dict,
        state_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> ConsultationState:
        state = ConsultationState(
            id=state_id or str(uuid.uuid4()),
            consultation_id=consultation_id,
            clinical_text=copy.deepcopy(clinical_text),
            created_at=created_at or self._clock(),
        )
        self.states[state.id] = (next(self._seq), state)
        return state

    # Reads

    async def get_consultation(self, consultation_id: str) -> Optional[Consultation]:
        return self.consultations.get(consultation_id)

    async def get_state(self, consultation_id: str, state_id: str) -> Optional[ConsultationState]:
        entry = self.states.get(state_id)
        if entry is None or entry[1].consultation_id != consultation_id:
            return None
        return copy.deepcopy(entry[1])

    async def latest_state(self, consultation_id: str) -> Optional[ConsultationState]:
        rows = self._newest_first(self.states, consultation_id)
        return copy.deepcopy(rows[0]) if rows else None

    async def get_photo_report(self, consultation_id: str, report_id: str) -> Optional[StoredPhotoReport]:
        entry = self.photo_reports.get(report_id)
        if entry is None or entry[1].consultation_id != consultation_id:
            return None
        return copy.deepcopy(entry[1])

    async def latest_photo_report(self, consultation_id: str) -> Optional[StoredPhotoReport]:
        rows = self._newest_first(self.photo_reports, consultation_id)
        return copy.deepcopy(rows[0]) if rows else None

    async def list_photo_reports(self, consultation_id: str) -> list[StoredPhotoReport]:
        return copy.deepcopy(self._newest_first(self.photo_reports, consultation_id))

    async def list_diagnosis_reports(self, consultation_id: str) -> list[StoredDiagnosisReport]:
        return copy.deepcopy(self._newest_first(self.diagnosis_reports, consultation_id))

    # Writes

    async def insert_photo_report(self, **values: Any) -> StoredPhotoReport:
        async with self._lock:
            self._require_consultation(values["consultation_id"])
            row = StoredPhotoReport(
                id=str(uuid.uuid4()),
                created_at=self._clock(),
                **copy.deepcopy(values),
            )
            self.photo_reports[row.id] = (next(self._seq), row)
        logger.info(f"Stored photo report {row.id} for consultation {row.consultation_id}")
        return copy.deepcopy(row)

    async def insert_diagnosis_report(self, **values: Any) -> StoredDiagnosisReport:
        async with self._lock:
            self._require_consultation(values["consultation_id"])
            row = StoredDiagnosisReport(
                id=str(uuid.uuid4()),
                created_at=self._clock(),
                **copy.deepcopy(values),
            )
            self.diagnosis_reports[row.id] = (next(self._seq), row)
        logger.info(f"Stored diagnosis report {row.id} for consultation {row.consultation_id}")
        return copy.deepcopy(row)

    def _require_consultation(self, consultation_id: str) -> None:
        if consultation_id not in self.consultations:
            raise PersistenceError(
                "Cannot store report for unknown consultation",
                details={"consultation_id": consultation_id},
            )

    @staticmethod
    def _newest_first(table: dict, consultation_id: str) -> list:
        rows = [entry for entry in table.values() if entry[1].consultation_id == consultation_id]
        rows.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
        return [row for _, row in rows]


# ---------------------------------------------------------------------------
# Photo storage
# ---------------------------------------------------------------------------

class PhotoStorage(Protocol):
    async def create_signed_url(self, path: str, expires_in: int) -> str: ...


class SignedUrlPhotoStorage:
    """Issues HMAC-signed, time-limited URLs for objects in the photo bucket."""

    def __init__(
        self,
        base_url: str,
        secret: str,
        existing_paths: Optional[set[str]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self._secret = secret.encode()
        # None means "don't check existence" (bucket listing not available)
        self.existing_paths = existing_paths
        self._clock = clock

    def _signature(self, path: str, expires: int) -> str:
        message = f"{path}:{expires}".encode()
        return hmac.new(self._secret, message, hashlib.sha256).hexdigest()

    async def create_signed_url(self, path: str, expires_in: int) -> str:
        path = path.lstrip("/")
        if not path or ".." in path.split("/"):
            raise StorageError("Invalid storage path", details={"path": path})
        if self.existing_paths is not None and path not in self.existing_paths:
            raise StorageError("Photo not found in storage", details={"path": path})

        expires = int(self._clock()) + expires_in
        query = urlencode({"expires": expires, "signature": self._signature(path, expires)})
        return f"{self.base_url}/{quote(path)}?{query}"

    def verify(self, path: str, expires: int, signature: str) -> bool:
        if expires < int(self._clock()):
            return False
        return hmac.compare_digest(self._signature(path.lstrip("/"), expires), signature)
