"""
Canonical, format-independent models for conversion input.

Every parser produces exactly these shapes, and the FHIR converter consumes
only these shapes:
- CanonicalPatient → FHIR Patient
- CanonicalObservation → FHIR Observation
- FieldMapping: source column/property → canonical target path
"""
from pydantic import BaseModel, Field, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import date, datetime
from enum import Enum
import uuid


PATIENT_ID_PREFIX = "patient-"


class InputFormat(str, Enum):
    """Supported source file formats"""
    CSV = "CSV"
    JSON = "JSON"
    CCDA = "CCDA"


class ConversionStatus(str, Enum):
    """Conversion job lifecycle states"""
    PROCESSING = "Processing"
    COMPLETED = "Completed"
    FAILED = "Failed"


class DataRequestStatus(str, Enum):
    """Lifecycle of a data-sharing request linked to a conversion"""
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    DATA_READY = "DataReady"
    COMPLETED = "Completed"
    EXPIRED = "Expired"


# ============================================================================
# Canonical target paths
# ============================================================================

class CanonicalField:
    """Fixed vocabulary of mapping targets."""
    PATIENT_IDENTIFIER = "patient.identifier"
    PATIENT_GIVEN = "patient.name.given"
    PATIENT_FAMILY = "patient.name.family"
    PATIENT_BIRTH_DATE = "patient.birthDate"
    PATIENT_GENDER = "patient.gender"
    PATIENT_PHONE = "patient.telecom.phone"
    PATIENT_EMAIL = "patient.telecom.email"
    PATIENT_ADDRESS_LINE = "patient.address.line"
    PATIENT_ADDRESS_CITY = "patient.address.city"
    PATIENT_ADDRESS_STATE = "patient.address.state"
    PATIENT_ADDRESS_POSTAL_CODE = "patient.address.postalCode"
    OBSERVATION_CODE = "observation.code"
    OBSERVATION_DISPLAY = "observation.display"
    OBSERVATION_VALUE = "observation.valueQuantity.value"
    OBSERVATION_UNIT = "observation.valueQuantity.unit"
    OBSERVATION_EFFECTIVE = "observation.effectiveDateTime"
    OBSERVATION_STATUS = "observation.status"


def prefix_patient_id(raw_id: str) -> str:
    """Apply the `patient-` prefix at most once."""
    raw_id = str(raw_id).strip()
    if raw_id.startswith(PATIENT_ID_PREFIX):
        return raw_id
    return f"{PATIENT_ID_PREFIX}{raw_id}"


def strip_patient_id(patient_id: str) -> str:
    """Remove a single leading `patient-` prefix if present."""
    if patient_id.startswith(PATIENT_ID_PREFIX):
        return patient_id[len(PATIENT_ID_PREFIX):]
    return patient_id


# ============================================================================
# Canonical entities
# ============================================================================

class CanonicalIdentifier(BaseModel):
    """External identifier (system + value)."""
    system: str
    value: str

    model_config = {"frozen": True}


class CanonicalAddress(BaseModel):
    """Postal address."""
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None

    model_config = {"frozen": True}

    def is_empty(self) -> bool:
        return not any([self.street, self.city, self.state, self.postal_code])


class CanonicalPatient(BaseModel):
    """
    Patient demographics extracted from one source file.

    Immutable once built; the FHIR converter never mutates it.
    """
    id: str = Field(..., description="Patient id, conventionally 'patient-<raw>'")
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    birth_date: Optional[date] = None
    gender: Optional[str] = Field(None, description="Free-text gender token from the source")
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[CanonicalAddress] = None
    identifiers: List[CanonicalIdentifier] = Field(default_factory=list)

    model_config = {"frozen": True}


class CanonicalObservation(BaseModel):
    """
    One measurement or finding, before terminology normalization.

    `code` and `display` carry the source's free text; LOINC/UCUM coding
    is applied during FHIR conversion.
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    patient_id: str
    code: str
    display: Optional[str] = None
    value_quantity: Optional[float] = None
    value_unit: Optional[str] = None
    value_string: Optional[str] = None
    effective_date_time: Optional[datetime] = None
    status: str = "final"
    category: Optional[str] = Field(None, description="'laboratory' or 'vital-signs' when known")

    model_config = {"frozen": True}


class FieldMapping(BaseModel):
    """Associates a source column/property with a canonical target path."""
    source_column: str = Field(..., min_length=1)
    canonical_path: str = Field(..., min_length=1)
    is_required: bool = False

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class DetectedField(BaseModel):
    """Suggested mapping for one raw column name."""
    column_name: str
    suggested_canonical_path: str
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    sample_values: List[str] = Field(default_factory=list)

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
