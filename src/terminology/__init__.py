"""
Terminology normalization: LOINC for observation codes, UCUM for units.
"""
from .dictionaries import (
    LOINC_MAPPINGS,
    UCUM_MAPPINGS,
    LOINC_SYSTEM,
    UCUM_SYSTEM,
    OBSERVATION_CATEGORY_SYSTEM,
    DATA_ABSENT_REASON_SYSTEM,
)
from .lookup import LoincLookupClient, LookupOutcome, LookupResult
from .resolver import CodeResolution, ResolutionSource, TerminologyResolver

__all__ = [
    "LOINC_MAPPINGS",
    "UCUM_MAPPINGS",
    "LOINC_SYSTEM",
    "UCUM_SYSTEM",
    "OBSERVATION_CATEGORY_SYSTEM",
    "DATA_ABSENT_REASON_SYSTEM",
    "LoincLookupClient",
    "LookupOutcome",
    "LookupResult",
    "CodeResolution",
    "ResolutionSource",
    "TerminologyResolver",
]
