from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, Dict, List

from .canonical import ConversionStatus, DetectedField, FieldMapping

# Serialized as camelCase, accepted in either case
API_CONFIG = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# Progress reported per status
STATUS_PROGRESS: Dict[ConversionStatus, int] = {
    ConversionStatus.COMPLETED: 100,
    ConversionStatus.PROCESSING: 50,
    ConversionStatus.FAILED: 0,
}

_missing = [status.value for status in ConversionStatus if status not in STATUS_PROGRESS]
if _missing:
    raise RuntimeError(f"No progress value for conversion status(es): {', '.join(_missing)}")


# Health check schema
class HealthResponse(BaseModel):
    """Health check response"""
    status: str


# ============================================================================
# Field detection
# ============================================================================

class FieldDetectionResponse(BaseModel):
    """Suggested mappings for a staged file"""
    file_id: str
    detected_fields: List[DetectedField] = Field(default_factory=list)
    required_mappings: List[str] = Field(default_factory=list, description="Canonical paths callers must map")
    available_fhir_fields: List[str] = Field(default_factory=list, description="All canonical target paths")

    model_config = API_CONFIG


# ============================================================================
# Conversion jobs
# ============================================================================

class StartConversionRequest(BaseModel):
    """Request to convert a staged file"""
    file_id: str = Field(..., min_length=1, description="Id of the staged upload")
    request_id: Optional[str] = Field(None, description="Data request to advance on completion")
    field_mappings: List[FieldMapping] = Field(default_factory=list, description="Source column → canonical path")

    model_config = API_CONFIG


class ConversionStatusResponse(BaseModel):
    """Status of a conversion job"""
    job_id: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    error_message: Optional[str] = None
    patients_processed: int = 0
    observations_processed: int = 0
    completed_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None
    request_id: Optional[str] = None
    input_format: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = API_CONFIG

    @classmethod
    def from_job(cls, job, progress: Optional[int] = None) -> "ConversionStatusResponse":
        """Build from a ConversionJob row; progress defaults to the status table."""
        status = ConversionStatus(job.status)
        return cls(
            job_id=job.job_id,
            status=status.value,
            progress=STATUS_PROGRESS[status] if progress is None else progress,
            error_message=job.error_message,
            patients_processed=job.patients_count or 0,
            observations_processed=job.observations_count or 0,
            completed_at=job.completed_at,
            processing_time_ms=job.processing_time_ms,
            request_id=job.request_id,
            input_format=job.input_format.value if job.input_format else None,
            created_at=job.created_at,
        )


class FhirBundlePreview(BaseModel):
    """Summary of the bundle a completed job would download"""
    job_id: str
    bundle_id: str
    patient_count: int
    observation_count: int
    sample_full_urls: List[str] = Field(default_factory=list)

    model_config = API_CONFIG


class ResetRequest(BaseModel):
    """Optional operator reason for a reset"""
    reason: Optional[str] = Field(None, max_length=1000)
