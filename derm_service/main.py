"""
Dermatology AI Service - FastAPI application.

Endpoints:
  POST /photo-analysis                     vision analysis of 1-5 clinical photos
  GET  /photo-analysis                     stored photo reports of a consultation
  GET  /photo-analysis/info                API self-description
  POST /diagnosis                          differential diagnosis synthesis
  GET  /diagnosis                          stored diagnosis reports of a consultation
  GET  /consultations/{id}/ai-reports      all AI reports + summary
  GET  /health
"""
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .access_guard import AccessGuard, InMemorySessionProvider, Principal, SessionProvider
from .config import Settings
from .context_assembler import ClinicalContext, ContextAssembler
from .cost_estimation import VISION_MODEL_PRICING, estimate_diagnosis_cost
from .diagnosis_synthesizer import DiagnosisSynthesizer
from .errors import (
    ERROR_CODES,
    AIRateLimitError,
    InputValidationError,
    PersistenceError,
    ServiceError,
)
from .input_sanitization import SUPPORTED_IMAGE_FORMATS
from .models import (
    MAX_IMAGES,
    DataSources,
    DiagnosisMetadata,
    DiagnosisRequest,
    DiagnosisResponse,
    PhotoAnalysisMetadata,
    PhotoAnalysisRequest,
    PhotoAnalysisResponse,
)
from .persistence import InMemoryReportStore, PhotoStorage, ReportStore, SignedUrlPhotoStorage
from .pipeline import PhotoAnalysisPipeline, resolve_image_urls
from .structured_logging import (
    DIAGNOSIS_GENERATED,
    PHOTO_ANALYSIS_COMPLETED,
    log_medical_event,
    log_request,
    set_request_id,
    setup_logging,
)
from .vision_client import VisionAnalysisClient

logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"

DISCLAIMER = (
    "AI-generated analysis for decision support only. It is not a diagnosis "
    "and must be reviewed by a qualified clinician."
)

PHOTO_ANALYSIS_EXAMPLE = {
    "consultation_id": "optional-consultation-id",
    "photo_urls": ["https://example.com/photo1.jpg"],
    "context": {
        "patient_age": 35,
        "patient_gender": "female",
        "chief_complaint": "Pigmented lesion on the back",
        "symptoms": ["itching", "change in color"],
        "duration": "3 months",
    },
    "options": {"temperature": 0.2, "maxTokens": 1200},
}

DIAGNOSIS_EXAMPLE = {
    "consultation_id": "consultation-id",
    "state_id": "optional-state-id",
    "photo_report_id": "optional-photo-report-id",
}

UNLOGGED_PATHS = ["/health", "/docs", "/openapi.json"]


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _validation_message(e: ValidationError) -> str:
    errors = e.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    msg = str(first.get("msg", "Invalid request"))
    return f"{loc}: {msg}" if loc else msg


def _bad_request(message: str, example: dict) -> JSONResponse:
    return JSONResponse(
        {"error": message, "code": ERROR_CODES["MISSING_PARAMETERS"], "example": example},
        status_code=400,
    )


def build_reports_summary(photo_reports: list, diagnosis_reports: list) -> dict:
    """Counts, latest timestamps, total cost and average latency."""
    def avg_latency(rows: list) -> float:
        return sum(r.latency_ms for r in rows) / len(rows) if rows else 0

    return {
        "total_photo_reports": len(photo_reports),
        "total_diagnosis_reports": len(diagnosis_reports),
        "total_photos_analyzed": sum(len(r.input_photos) for r in photo_reports),
        "latest_analysis": photo_reports[0].created_at.isoformat() if photo_reports else None,
        "latest_diagnosis": diagnosis_reports[0].created_at.isoformat() if diagnosis_reports else None,
        "total_cost_usd": round(
            sum(r.cost_usd for r in photo_reports) + sum(r.cost_usd for r in diagnosis_reports), 4
        ),
        "average_latency_ms": {
            "photo_analysis": avg_latency(photo_reports),
            "diagnosis": avg_latency(diagnosis_reports),
        },
    }


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[ReportStore] = None,
    storage: Optional[PhotoStorage] = None,
    vision_client: Optional[VisionAnalysisClient] = None,
    synthesizer: Optional[DiagnosisSynthesizer] = None,
    sessions: Optional[SessionProvider] = None,
) -> FastAPI:
    """Build the FastAPI app. Collaborators default to in-memory/reference ones."""
    settings = settings or Settings.from_env()
    store = store if store is not None else InMemoryReportStore()
    storage = storage or SignedUrlPhotoStorage(settings.storage_base_url, settings.signed_url_secret)
    vision_client = vision_client or VisionAnalysisClient(settings)
    synthesizer = synthesizer or DiagnosisSynthesizer(settings)
    guard = AccessGuard(settings.service_api_key, sessions or InMemorySessionProvider())
    assembler = ContextAssembler(store)
    pipeline = PhotoAnalysisPipeline(vision_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, use_json=settings.log_format == "json")
        logger.info("Starting Dermatology AI Service...")
        if not settings.vision_api_key:
            logger.warning("OPENAI_API_KEY not set: photo analysis will return 503")
        if not settings.diagnosis_api_key:
            logger.warning("GEMINI_API_KEY not set: diagnosis will return 503")
        if not settings.service_api_key:
            logger.info("SERVICE_API_KEY not set: service-to-service access disabled")
        logger.info("Ready to serve requests.")
        yield
        logger.info("Shutting down...")
        await vision_client.close()

    app = FastAPI(
        title="Dermatology AI Service",
        description="Clinical photo analysis and differential diagnosis API",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.storage = storage
    app.state.vision_client = vision_client
    app.state.synthesizer = synthesizer
    app.state.guard = guard
    app.state.assembler = assembler
    app.state.pipeline = pipeline

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization", "X-API-Key", "X-Request-ID"],
    )

    @app.middleware("http")
    async def request_logging_middleware(request: Request, call_next):
        """Middleware for request ID tracking and logging."""
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        set_request_id(request_id)

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        if request.url.path not in UNLOGGED_PATHS:
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=duration_ms,
                client_ip=request.client.host if request.client else None,
            )

        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ServiceError)
    async def service_error_handler(request: Request, exc: ServiceError):
        headers = {}
        if isinstance(exc, AIRateLimitError):
            headers["Retry-After"] = str(exc.retry_after)
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message}")
        return JSONResponse(exc.to_response(), status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        example = DIAGNOSIS_EXAMPLE if request.url.path.startswith("/diagnosis") else PHOTO_ANALYSIS_EXAMPLE
        return _bad_request("Request body must be a JSON object", example)

    async def _load_accessible_consultation(principal: Principal, consultation_id: str):
        # Anonymous callers get 401 before the lookup, never a 404
        guard.require_authenticated(principal)
        consultation = await assembler.load_consultation(consultation_id)
        guard.require_consultation_access(principal, consultation)
        return consultation

    # --- Photo analysis ---------------------------------------------------

    @app.post("/photo-analysis", response_model=PhotoAnalysisResponse)
    async def photo_analysis(request: dict, req: Request):
        """Analyze clinical photos, falling back to a mock report if the model is down."""
        principal = await guard.authenticate(req.headers)

        try:
            body = PhotoAnalysisRequest.model_validate(request)
        except ValidationError as e:
            return _bad_request(_validation_message(e), PHOTO_ANALYSIS_EXAMPLE)

        # Anonymous callers never read or write consultation data
        consultation = None
        if principal.is_authenticated and body.consultation_id:
            consultation = await _load_accessible_consultation(principal, body.consultation_id)
        elif body.consultation_id:
            logger.info("Ignoring consultation_id from anonymous caller")

        try:
            image_urls, input_photos = await resolve_image_urls(
                photo_urls=body.photo_urls,
                photo_storage_paths=body.photo_storage_paths,
                consultation_id=consultation.id if consultation else None,
                principal=principal,
                storage=storage,
                allowed_hosts=settings.allowed_image_hosts,
                signed_url_ttl=settings.signed_url_ttl_seconds,
            )
        except InputValidationError as e:
            e.details.setdefault("example", PHOTO_ANALYSIS_EXAMPLE)
            raise

        request_context = ClinicalContext.from_mapping(body.context.model_dump())
        if consultation is not None:
            assembled = await assembler.assemble(
                consultation.id, overrides=request_context, consultation=consultation
            )
            context = assembled.context
        else:
            context = request_context

        outcome = await pipeline.run(
            image_urls,
            context,
            body.options,
            consultation_id=consultation.id if consultation else None,
            user_id=principal.user_id,
        )

        report_id = None
        saved = False
        if consultation is not None:
            try:
                row = await store.insert_photo_report(
                    consultation_id=consultation.id,
                    model=outcome.model,
                    prompt_version=outcome.prompt_version,
                    input_photos=input_photos,
                    report=outcome.report.model_dump(),
                    latency_ms=outcome.latency_ms,
                    cost_usd=outcome.estimated_cost_usd,
                    source=outcome.source,
                )
                report_id = row.id
                saved = True
            except Exception as e:
                logger.error(f"Failed to store photo report for consultation {consultation.id}: {e}")

        log_medical_event(
            PHOTO_ANALYSIS_COMPLETED,
            consultation.id if consultation else None,
            principal.user_id,
            report_id=report_id,
            source=outcome.source,
            model=outcome.model,
            images_analyzed=len(image_urls),
            latency_ms=outcome.latency_ms,
            urgency_level=outcome.report.urgency_level,
        )

        return PhotoAnalysisResponse(
            analysis=outcome.report,
            metadata=PhotoAnalysisMetadata(
                report_id=report_id,
                latency_ms=outcome.latency_ms,
                estimated_cost_usd=outcome.estimated_cost_usd,
                model=outcome.model,
                prompt_version=outcome.prompt_version,
                images_analyzed=len(image_urls),
                timestamp=_utc_timestamp(),
                saved_to_database=saved,
                user_authenticated=principal.is_authenticated,
                is_service=principal.is_service,
                source=outcome.source,
                attempts=outcome.attempts,
                disclaimer=DISCLAIMER,
            ),
        )

    @app.get("/photo-analysis")
    async def list_photo_reports(req: Request, consultation_id: Optional[str] = None):
        principal = await guard.authenticate(req.headers)
        if not consultation_id:
            raise InputValidationError("consultation_id is required")
        await _load_accessible_consultation(principal, consultation_id)
        rows = await store.list_photo_reports(consultation_id)
        return {"reports": [row.to_dict() for row in rows]}

    @app.get("/photo-analysis/info")
    async def photo_analysis_info():
        pricing = VISION_MODEL_PRICING.get(settings.vision_model, VISION_MODEL_PRICING["default"])
        return {
            "service": "Dermatology photo analysis",
            "version": SERVICE_VERSION,
            "endpoint": "POST /photo-analysis",
            "authentication": {
                "service": "x-api-key header",
                "user": "Authorization: Bearer <session token>",
                "anonymous": "photo_urls only, results are not stored",
            },
            "limits": {"min_images": 1, "max_images": MAX_IMAGES},
            "supported_formats": SUPPORTED_IMAGE_FORMATS,
            "input_modes": ["photo_urls", "photo_storage_paths"],
            "options": {
                "model": settings.vision_model,
                "temperature": settings.vision_temperature,
                "maxTokens": settings.vision_max_tokens,
            },
            "timeout_seconds": settings.vision_timeout_seconds,
            "max_retries": settings.ai_max_retries,
            "cost_estimation": {
                "per_image_usd": pricing.per_image,
                "text_processing_usd": pricing.text_processing,
            },
            "example": PHOTO_ANALYSIS_EXAMPLE,
        }

    # --- Diagnosis --------------------------------------------------------

    @app.post("/diagnosis", response_model=DiagnosisResponse)
    async def diagnosis(request: dict, req: Request):
        """Synthesize a differential diagnosis from everything known about a consultation."""
        principal = await guard.authenticate(req.headers)

        try:
            body = DiagnosisRequest.model_validate(request)
        except ValidationError as e:
            return _bad_request(_validation_message(e), DIAGNOSIS_EXAMPLE)

        consultation = await _load_accessible_consultation(principal, body.consultation_id)
        assembled = await assembler.assemble(
            body.consultation_id,
            state_id=body.state_id,
            photo_report_id=body.photo_report_id,
            consultation=consultation,
        )

        result = await synthesizer.synthesize(assembled.context)
        cost = estimate_diagnosis_cost(result.model)

        try:
            row = await store.insert_diagnosis_report(
                consultation_id=consultation.id,
                model=result.model,
                prompt_version=result.prompt_version,
                input_refs={
                    "state_id": assembled.state_id,
                    "photo_report_id": assembled.photo_report_id,
                },
                report=result.report.model_dump(),
                latency_ms=result.latency_ms,
                cost_usd=cost,
            )
        except PersistenceError:
            raise
        except Exception as e:
            logger.error(f"Failed to store diagnosis report for consultation {consultation.id}: {e}")
            raise PersistenceError("Failed to save diagnosis report") from e

        data_sources = DataSources(
            consultation_data=True,
            photo_analysis=assembled.has_photo_analysis,
            clinical_state=assembled.has_clinical_state,
        )
        log_medical_event(
            DIAGNOSIS_GENERATED,
            consultation.id,
            principal.user_id,
            diagnosis_report_id=row.id,
            model=result.model,
            latency_ms=result.latency_ms,
            attempts=result.attempts,
            data_sources=data_sources.model_dump(),
        )

        return DiagnosisResponse(
            diagnosis_report_id=row.id,
            report=result.report,
            metadata=DiagnosisMetadata(
                latency_ms=result.latency_ms,
                cost_usd=cost,
                model=result.model,
                prompt_version=result.prompt_version,
                data_sources=data_sources,
            ),
        )

    @app.get("/diagnosis")
    async def list_diagnosis_reports(req: Request, consultation_id: Optional[str] = None):
        principal = await guard.authenticate(req.headers)
        if not consultation_id:
            raise InputValidationError("consultation_id is required")
        await _load_accessible_consultation(principal, consultation_id)
        rows = await store.list_diagnosis_reports(consultation_id)
        return {"reports": [row.to_dict() for row in rows]}

    @app.get("/consultations/{consultation_id}/ai-reports")
    async def consultation_ai_reports(consultation_id: str, req: Request):
        principal = await guard.authenticate(req.headers)
        await _load_accessible_consultation(principal, consultation_id)
        photo_reports = await store.list_photo_reports(consultation_id)
        diagnosis_reports = await store.list_diagnosis_reports(consultation_id)
        return {
            "photo_reports": [row.to_dict() for row in photo_reports],
            "diagnosis_reports": [row.to_dict() for row in diagnosis_reports],
            "summary": build_reports_summary(photo_reports, diagnosis_reports),
        }

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "version": SERVICE_VERSION,
            "vision_model": settings.vision_model,
            "vision_configured": bool(settings.vision_api_key),
            "diagnosis_model": settings.diagnosis_model,
            "diagnosis_configured": bool(settings.diagnosis_api_key),
            "service_key_configured": bool(settings.service_api_key),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
