"""
CSV Parser - delimited text → canonical patient + observations.

A CSV file encodes a single patient:
- The first data row supplies the patient demographics
- Every data row (including the first) may contribute one observation
- Rows without a mapped code/display are skipped, not fatal
"""
import csv
import io
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from src.canonical import (
    CanonicalAddress,
    CanonicalField,
    CanonicalObservation,
    CanonicalPatient,
    FieldMapping,
    InputFormat,
    prefix_patient_id,
)
from src.errors import ParseError
from .base import FormatParser, ParsedFile, build_mapping_index, lookup_value
from .values import parse_date, parse_datetime, parse_number

logger = logging.getLogger(__name__)


class CsvParser(FormatParser):
    """Parses comma-separated files driven by caller-supplied field mappings."""

    @property
    def input_format(self) -> InputFormat:
        return InputFormat.CSV

    def parse(
        self,
        file_path: Union[str, Path],
        field_mappings: Sequence[FieldMapping],
        job_id: str,
    ) -> ParsedFile:
        content = self._read_text(file_path)

        try:
            rows = [row for row in csv.reader(io.StringIO(content)) if any(cell.strip() for cell in row)]
        except csv.Error as e:
            raise ParseError(f"CSV parsing failed: {e}") from e

        if len(rows) <= 1:
            # Header only (or empty): no observations, fallback patient
            return ParsedFile(patient=CanonicalPatient(id=prefix_patient_id(job_id)))

        headers = [header.strip() for header in rows[0]]
        mapping_index = build_mapping_index(field_mappings)

        records = [self._to_record(headers, row) for row in rows[1:]]

        patient = self._parse_patient(records[0], mapping_index, job_id)

        observations: List[CanonicalObservation] = []
        for row_number, record in enumerate(records, start=2):
            observation = self._parse_observation(record, mapping_index, patient.id)
            if observation is None:
                logger.debug("Skipping CSV row %d: no observation code or display", row_number)
                continue
            observations.append(observation)

        logger.info(
            "Parsed CSV file: 1 patient, %d observations from %d data rows",
            len(observations), len(records),
        )
        return ParsedFile(patient=patient, observations=observations)

    @staticmethod
    def _to_record(headers: List[str], values: List[str]) -> Dict[str, str]:
        """Zip header names with cell values; extra cells are ignored."""
        return {
            headers[i]: values[i].strip()
            for i in range(min(len(headers), len(values)))
        }

    def _parse_patient(
        self,
        record: Dict[str, str],
        mappings: Dict[str, str],
        job_id: str,
    ) -> CanonicalPatient:
        """Build the patient from the first data row."""
        raw_id = lookup_value(record, mappings, CanonicalField.PATIENT_IDENTIFIER)

        address = CanonicalAddress(
            street=lookup_value(record, mappings, CanonicalField.PATIENT_ADDRESS_LINE),
            city=lookup_value(record, mappings, CanonicalField.PATIENT_ADDRESS_CITY),
            state=lookup_value(record, mappings, CanonicalField.PATIENT_ADDRESS_STATE),
            postal_code=lookup_value(record, mappings, CanonicalField.PATIENT_ADDRESS_POSTAL_CODE),
        )

        return CanonicalPatient(
            id=prefix_patient_id(raw_id or job_id),
            given_name=lookup_value(record, mappings, CanonicalField.PATIENT_GIVEN),
            family_name=lookup_value(record, mappings, CanonicalField.PATIENT_FAMILY),
            birth_date=parse_date(lookup_value(record, mappings, CanonicalField.PATIENT_BIRTH_DATE)),
            gender=lookup_value(record, mappings, CanonicalField.PATIENT_GENDER),
            phone=lookup_value(record, mappings, CanonicalField.PATIENT_PHONE),
            email=lookup_value(record, mappings, CanonicalField.PATIENT_EMAIL),
            address=None if address.is_empty() else address,
        )

    def _parse_observation(
        self,
        record: Dict[str, str],
        mappings: Dict[str, str],
        patient_id: str,
    ) -> Optional[CanonicalObservation]:
        """Build one observation from a row, or None if the row has no test name."""
        test_name = (
            lookup_value(record, mappings, CanonicalField.OBSERVATION_CODE)
            or lookup_value(record, mappings, CanonicalField.OBSERVATION_DISPLAY)
        )
        if test_name is None:
            return None

        fields = {
            "patient_id": patient_id,
            "code": test_name,
            "display": lookup_value(record, mappings, CanonicalField.OBSERVATION_DISPLAY) or test_name,
            "value_unit": lookup_value(record, mappings, CanonicalField.OBSERVATION_UNIT),
            "effective_date_time": parse_datetime(
                lookup_value(record, mappings, CanonicalField.OBSERVATION_EFFECTIVE)
            ),
        }

        # Numeric first, then plain string
        raw_value = lookup_value(record, mappings, CanonicalField.OBSERVATION_VALUE)
        if raw_value is not None:
            number = parse_number(raw_value)
            if number is not None:
                fields["value_quantity"] = number
            else:
                fields["value_string"] = raw_value

        status = lookup_value(record, mappings, CanonicalField.OBSERVATION_STATUS)
        if status:
            fields["status"] = status

        return CanonicalObservation(**fields)
