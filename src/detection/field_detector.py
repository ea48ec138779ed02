"""
Heuristic detection of canonical mapping targets for raw column names.

Each column is compared against a fixed synonym table:
- exact match scores 1.0
- substring match (either direction) scores 0.8
- otherwise normalized Levenshtein similarity

The best-scoring synonym across the whole table wins; ties keep table order.
"""
from typing import Dict, List, Optional, Sequence, Tuple

from src.canonical import CanonicalField, DetectedField

MATCH_THRESHOLD = 0.7

# Canonical path → synonyms (lowercase). Order matters for ties.
FIELD_PATTERNS: Dict[str, List[str]] = {
    CanonicalField.PATIENT_IDENTIFIER: [
        "patient_id", "patientid", "id", "patient_number", "mrn", "medical_record_number",
    ],
    CanonicalField.PATIENT_GIVEN: ["first_name", "firstname", "given_name", "fname", "given"],
    CanonicalField.PATIENT_FAMILY: ["last_name", "lastname", "family_name", "lname", "surname", "family"],
    CanonicalField.PATIENT_BIRTH_DATE: ["dob", "date_of_birth", "dateofbirth", "birth_date", "birthdate"],
    CanonicalField.PATIENT_GENDER: ["gender", "sex"],
    CanonicalField.OBSERVATION_CODE: [
        "test_name", "testname", "lab_test", "test_type", "observation_code", "code",
    ],
    CanonicalField.OBSERVATION_VALUE: [
        "result", "value", "test_result", "lab_value", "result_value", "numeric_value",
    ],
    CanonicalField.OBSERVATION_UNIT: ["unit", "units", "measurement_unit", "uom"],
    CanonicalField.OBSERVATION_EFFECTIVE: [
        "test_date", "collection_date", "date", "observation_date", "effective_date",
    ],
    CanonicalField.PATIENT_PHONE: ["phone", "phone_number", "telephone", "mobile"],
    CanonicalField.PATIENT_EMAIL: ["email", "email_address", "e_mail"],
    CanonicalField.PATIENT_ADDRESS_LINE: ["address", "street", "street_address", "address_line"],
    CanonicalField.PATIENT_ADDRESS_CITY: ["city", "town"],
    CanonicalField.PATIENT_ADDRESS_STATE: ["state", "province"],
    CanonicalField.PATIENT_ADDRESS_POSTAL_CODE: ["zip", "zipcode", "zip_code", "postal_code", "postalcode"],
    CanonicalField.OBSERVATION_DISPLAY: ["test_description", "description", "display", "observation_name"],
    CanonicalField.OBSERVATION_STATUS: ["result_status", "observation_status", "status"],
}

REQUIRED_FIELDS: List[str] = [
    CanonicalField.PATIENT_IDENTIFIER,
    CanonicalField.PATIENT_GIVEN,
    CanonicalField.PATIENT_FAMILY,
    CanonicalField.OBSERVATION_CODE,
    CanonicalField.OBSERVATION_VALUE,
]


def levenshtein_distance(source: str, target: str) -> int:
    """Edit distance between two strings (insert/delete/substitute)."""
    if not source:
        return len(target)
    if not target:
        return len(source)

    previous = list(range(len(target) + 1))
    for i, source_char in enumerate(source, start=1):
        current = [i]
        for j, target_char in enumerate(target, start=1):
            cost = 0 if source_char == target_char else 1
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + cost,
            ))
        previous = current
    return previous[-1]


def calculate_similarity(source: str, target: str) -> float:
    """Similarity in [0, 1] between a normalized column name and a synonym."""
    if source == target:
        return 1.0
    if not source or not target:
        return 0.0
    if source in target or target in source:
        return 0.8
    distance = levenshtein_distance(source, target)
    return 1.0 - distance / max(len(source), len(target))


class FieldDetector:
    """
    Suggests canonical mapping targets for raw column names.

    Pure and stateless; one instance can be shared between requests.
    """

    def __init__(self, patterns: Optional[Dict[str, List[str]]] = None, threshold: float = MATCH_THRESHOLD):
        self.patterns = patterns or FIELD_PATTERNS
        self.threshold = threshold

    def detect(self, column_names: Sequence[str]) -> List[DetectedField]:
        """
        Suggest a mapping for each column; unmatched columns are omitted.

        Args:
            column_names: Raw header / property names in source order

        Returns:
            DetectedField per matched column, in input order
        """
        detected = []
        for column_name in column_names:
            match = self.best_match(column_name)
            if match is None:
                continue
            canonical_path, score = match
            detected.append(DetectedField(
                column_name=column_name,
                suggested_canonical_path=canonical_path,
                confidence_score=round(score, 4),
            ))
        return detected

    def best_match(self, column_name: str) -> Optional[Tuple[str, float]]:
        """Best (canonical_path, score) for a column, or None below threshold."""
        normalized = (column_name or "").strip().lower()
        if not normalized:
            return None

        best_path = None
        best_score = 0.0
        for canonical_path, synonyms in self.patterns.items():
            for synonym in synonyms:
                score = calculate_similarity(normalized, synonym)
                if score > best_score:
                    best_path, best_score = canonical_path, score
            if best_score == 1.0:
                break

        if best_path is None or best_score < self.threshold:
            return None
        return best_path, best_score

    def available_canonical_fields(self) -> List[str]:
        return list(self.patterns.keys())

    def required_canonical_fields(self) -> List[str]:
        return list(REQUIRED_FIELDS)
