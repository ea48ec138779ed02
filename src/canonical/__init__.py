"""
Canonical conversion model shared by parsers, detection and FHIR assembly.
"""
from .models import (
    InputFormat,
    ConversionStatus,
    DataRequestStatus,
    CanonicalField,
    CanonicalIdentifier,
    CanonicalAddress,
    CanonicalPatient,
    CanonicalObservation,
    FieldMapping,
    DetectedField,
    prefix_patient_id,
    strip_patient_id,
)

__all__ = [
    "InputFormat",
    "ConversionStatus",
    "DataRequestStatus",
    "CanonicalField",
    "CanonicalIdentifier",
    "CanonicalAddress",
    "CanonicalPatient",
    "CanonicalObservation",
    "FieldMapping",
    "DetectedField",
    "prefix_patient_id",
    "strip_patient_id",
]
