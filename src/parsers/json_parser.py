"""
JSON Parser - nested patient export → canonical patient + observations.

Expected shape (every key optional):

    {
      "patientId": "12345",
      "demographics": {"firstName": ..., "lastName": ..., "gender": ...,
                       "dateOfBirth": ..., "phone": ..., "email": ...,
                       "address": {"street", "city", "state", "zipCode"}},
      "labResults": [{"date": ..., "results": {"Hemoglobin": "13.5 g/dL"}}],
      "encounters": [{"date": ..., "vitals": {"Heart Rate": 72}}]
    }

Field mappings are not consulted: the property names above are fixed.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from src.canonical import (
    CanonicalAddress,
    CanonicalObservation,
    CanonicalPatient,
    FieldMapping,
    InputFormat,
    prefix_patient_id,
)
from src.errors import ParseError
from .base import FormatParser, ParsedFile
from .values import parse_date, parse_datetime, split_value_and_unit, utcnow

logger = logging.getLogger(__name__)

LAB_CATEGORY = "laboratory"
VITAL_CATEGORY = "vital-signs"


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class JsonParser(FormatParser):
    """Parses the nested patient JSON export."""

    @property
    def input_format(self) -> InputFormat:
        return InputFormat.JSON

    def parse(
        self,
        file_path: Union[str, Path],
        field_mappings: Sequence[FieldMapping],
        job_id: str,
    ) -> ParsedFile:
        content = self._read_text(file_path)

        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            raise ParseError(f"JSON parsing failed: {e}") from e

        if not isinstance(document, dict):
            raise ParseError(
                f"JSON parsing failed: expected an object at the root, got {type(document).__name__}"
            )

        patient = self._parse_patient(document, job_id)
        parsed_at = utcnow()

        observations: List[CanonicalObservation] = []
        for lab in self._entries(document, "labResults"):
            effective = self._entry_date(lab, "date", "collectionDate") or parsed_at
            observations.extend(
                self._observations_from(lab.get("results"), patient.id, effective, LAB_CATEGORY)
            )

        for encounter in self._entries(document, "encounters"):
            effective = self._entry_date(encounter, "date") or parsed_at
            observations.extend(
                self._observations_from(encounter.get("vitals"), patient.id, effective, VITAL_CATEGORY)
            )

        logger.info("Parsed JSON file: 1 patient, %d observations", len(observations))
        return ParsedFile(patient=patient, observations=observations)

    def _parse_patient(self, document: Dict[str, Any], job_id: str) -> CanonicalPatient:
        raw_id = _text(document.get("patientId"))
        demographics = document.get("demographics")
        if not isinstance(demographics, dict):
            demographics = {}

        address = None
        raw_address = demographics.get("address")
        if isinstance(raw_address, dict):
            address = CanonicalAddress(
                street=_text(raw_address.get("street")),
                city=_text(raw_address.get("city")),
                state=_text(raw_address.get("state")),
                postal_code=_text(raw_address.get("zipCode")),
            )
            if address.is_empty():
                address = None

        return CanonicalPatient(
            id=prefix_patient_id(raw_id or job_id),
            given_name=_text(demographics.get("firstName")),
            family_name=_text(demographics.get("lastName")),
            birth_date=parse_date(_text(demographics.get("dateOfBirth"))),
            gender=_text(demographics.get("gender")),
            phone=_text(demographics.get("phone")),
            email=_text(demographics.get("email")),
            address=address,
        )

    @staticmethod
    def _entries(document: Dict[str, Any], key: str) -> List[Dict[str, Any]]:
        """Object entries of an array property; anything else is ignored."""
        entries = document.get(key)
        if not isinstance(entries, list):
            return []
        return [entry for entry in entries if isinstance(entry, dict)]

    @staticmethod
    def _entry_date(entry: Dict[str, Any], *keys: str) -> Optional[datetime]:
        for key in keys:
            parsed = parse_datetime(_text(entry.get(key)))
            if parsed is not None:
                return parsed
        return None

    @staticmethod
    def _observations_from(
        values: Any,
        patient_id: str,
        effective: datetime,
        category: str,
    ) -> List[CanonicalObservation]:
        """One observation per `name: value` pair, in document order."""
        if not isinstance(values, dict):
            return []

        observations = []
        for name, raw_value in values.items():
            name = _text(name)
            if name is None:
                continue
            quantity, unit, string_value = split_value_and_unit(raw_value)
            observations.append(CanonicalObservation(
                patient_id=patient_id,
                code=name,
                display=name,
                value_quantity=quantity,
                value_unit=unit,
                value_string=string_value,
                effective_date_time=effective,
                category=category,
            ))
        return observations
