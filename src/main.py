import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, HTTPException, Response
from sqlalchemy.orm import Session

from . import models, schemas, database
from .config import settings
from .errors import (
    ConversionInProgressError,
    ConversionNotCompletedError,
    ConversionServiceError,
    FileExpiredError,
    JobAccessError,
    JobNotFoundError,
    ValidationError,
)
from .jobs import ConversionJobManager
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

_manager: Optional[ConversionJobManager] = None


def get_conversion_manager() -> ConversionJobManager:
    """Process-wide conversion manager, created on first use"""
    global _manager
    if _manager is None:
        _manager = ConversionJobManager.from_settings(settings, database.SessionLocal)
    return _manager


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create database tables on startup"""
    setup_logging(settings.log_level, json_format=settings.log_json)
    models.Base.metadata.create_all(bind=database.engine)
    logger.info("Database tables created")
    yield
    if _manager is not None:
        _manager.shutdown(wait=False)


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Converts CSV, JSON and C-CDA healthcare files into FHIR Bundles",
    version="1.0.0",
    lifespan=lifespan
)


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity, supplied by the authenticating gateway"""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def _http_error(error: ConversionServiceError) -> HTTPException:
    """Map a service error onto its HTTP status"""
    if isinstance(error, (ValidationError, ConversionInProgressError, FileExpiredError)):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, JobAccessError):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, JobNotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ConversionNotCompletedError):
        return HTTPException(status_code=409, detail=str(error))
    logger.error("Unhandled service error: %s", error)
    return HTTPException(status_code=500, detail="Internal server error")


def _internal_error(action: str) -> HTTPException:
    logger.exception("%s failed", action)
    return HTTPException(status_code=500, detail="Internal server error")


@app.get("/health", response_model=schemas.HealthResponse)
def health_check():
    """
    Health check endpoint - returns {"status": "ok"}
    """
    return {"status": "ok"}


# ============================================================================
# FIELD DETECTION
# ============================================================================

@app.get("/api/convert/fhir-fields", response_model=List[str])
def get_fhir_fields(manager: ConversionJobManager = Depends(get_conversion_manager)):
    """
    List every canonical target a source column can be mapped to.
    """
    return manager.available_fields()


@app.get("/api/convert/{file_id}/detect-fields", response_model=schemas.FieldDetectionResponse)
def detect_fields(
    file_id: str,
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Suggest field mappings for a staged file.

    Returns detected columns with confidence scores, the mappings a
    conversion requires, and all available targets.
    """
    try:
        return manager.detect_fields(file_id)
    except ConversionServiceError as e:
        raise _http_error(e)
    except Exception:
        raise _internal_error("Field detection")


# ============================================================================
# CONVERSION JOBS
# ============================================================================

@app.post("/api/convert/start", response_model=schemas.ConversionStatusResponse)
def start_conversion(
    request: schemas.StartConversionRequest,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Start converting a staged file to a FHIR Bundle.

    Validates the file and mappings, creates the job and returns at once
    with progress 0. Poll /api/convert/status/{job_id} for the outcome.

    Errors:
    - 400: file expired, unsupported file, bad mappings, or a conversion
      for this file is already in progress
    """
    try:
        job = manager.start_conversion(db, request, user_id)
        return schemas.ConversionStatusResponse.from_job(job, progress=0)
    except ConversionServiceError as e:
        raise _http_error(e)
    except Exception:
        raise _internal_error("Starting conversion")


@app.get("/api/convert/status/{job_id}", response_model=schemas.ConversionStatusResponse)
def get_conversion_status(
    job_id: str,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """Current status of a conversion job"""
    try:
        return schemas.ConversionStatusResponse.from_job(manager.get_status(db, job_id))
    except ConversionServiceError as e:
        raise _http_error(e)


@app.get("/api/convert/preview/{job_id}", response_model=schemas.FhirBundlePreview)
def preview_bundle(
    job_id: str,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Summary of a completed job's bundle: id, counts and sample entry URLs.
    """
    try:
        return manager.preview(db, job_id)
    except ConversionServiceError as e:
        raise _http_error(e)
    except Exception:
        raise _internal_error("Bundle preview")


@app.get("/api/convert/download/{job_id}")
def download_bundle(
    job_id: str,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Download a completed job's FHIR Bundle as JSON.

    Marks a linked data request as Completed.
    """
    try:
        content = manager.download_bundle(db, job_id)
    except ConversionServiceError as e:
        raise _http_error(e)
    except Exception:
        raise _internal_error("Bundle download")

    return Response(
        content=content,
        media_type="application/fhir+json",
        headers={"Content-Disposition": f'attachment; filename="fhir-bundle-{job_id}.json"'},
    )


@app.post("/api/convert/reset/{job_id}", response_model=schemas.ConversionStatusResponse)
def reset_conversion(
    job_id: str,
    request: Optional[schemas.ResetRequest] = None,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Force a job to Failed (owner only). A running worker discards its result.
    """
    try:
        job = manager.reset_job(db, job_id, user_id, reason=request.reason if request else None)
        return schemas.ConversionStatusResponse.from_job(job)
    except ConversionServiceError as e:
        raise _http_error(e)
    except Exception:
        raise _internal_error("Job reset")


@app.get("/api/convert/by-request/{request_id}", response_model=schemas.ConversionStatusResponse)
def get_conversion_by_request(
    request_id: str,
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """Latest conversion job linked to a data request"""
    try:
        return schemas.ConversionStatusResponse.from_job(manager.get_by_request(db, request_id))
    except ConversionServiceError as e:
        raise _http_error(e)


@app.get("/api/convert/history", response_model=List[schemas.ConversionStatusResponse])
def get_conversion_history(
    db: Session = Depends(database.get_db),
    manager: ConversionJobManager = Depends(get_conversion_manager),
    user_id: str = Depends(get_current_user_id),
):
    """
    Conversion history for the caller: own jobs plus jobs linked to data
    requests the caller made, newest first.
    """
    try:
        return [schemas.ConversionStatusResponse.from_job(job) for job in manager.get_history(db, user_id)]
    except Exception:
        raise _internal_error("Conversion history")
