"""
Field detection: raw column names → suggested canonical mapping targets.
"""
from .field_detector import (
    FieldDetector,
    FIELD_PATTERNS,
    REQUIRED_FIELDS,
    MATCH_THRESHOLD,
    calculate_similarity,
    levenshtein_distance,
)
from .sources import extract_source_fields

__all__ = [
    "FieldDetector",
    "FIELD_PATTERNS",
    "REQUIRED_FIELDS",
    "MATCH_THRESHOLD",
    "calculate_similarity",
    "levenshtein_distance",
    "extract_source_fields",
]
