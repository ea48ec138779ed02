"""
FHIR Conversion Module

Converts canonical patients and observations into FHIR resources using
the fhir.resources library.

Components:
- mappers: Patient / Observation mappers
- bundler: FHIR Bundle creator
- converter: Main conversion service
"""
from .converter import FHIRConverter, ConversionResult
from .bundler import FHIRBundler, bundle_id_for
from .mappers import fhir_id, map_gender, patient_reference

__all__ = [
    "FHIRConverter",
    "ConversionResult",
    "FHIRBundler",
    "bundle_id_for",
    "fhir_id",
    "map_gender",
    "patient_reference",
]
