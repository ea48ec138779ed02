"""
C-CDA Parser - HL7 v3 ClinicalDocument XML → canonical patient + observations.

Extraction is best effort: only XML that cannot be parsed at all fails.
Missing demographics fall back to fixed placeholders, and a document
without any observation yields a single "General Health Status" entry.
"""
import logging
import re
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union
from xml.etree.ElementTree import Element, ParseError as XMLParseError

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import fromstring

from src.canonical import (
    CanonicalAddress,
    CanonicalIdentifier,
    CanonicalObservation,
    CanonicalPatient,
    FieldMapping,
    InputFormat,
    prefix_patient_id,
)
from src.errors import ParseError
from .base import FormatParser, ParsedFile
from .values import parse_date, parse_datetime, parse_number, utcnow

logger = logging.getLogger(__name__)

HL7_NS = "urn:hl7-org:v3"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"

NS = {"hl7": HL7_NS, "xsi": XSI_NS}
XSI_TYPE = f"{{{XSI_NS}}}type"

DEFAULT_GIVEN_NAME = "Sample"
DEFAULT_FAMILY_NAME = "Patient"
DEFAULT_GENDER = "Unknown"

PLACEHOLDER_DISPLAY = "General Health Status"
PLACEHOLDER_VALUE = "Good"

GENDER_CODES = {
    "M": "male",
    "F": "female",
}

_CLINICAL_DOCUMENT_TAG = re.compile(r"<(?:\w+:)?ClinicalDocument\b")


def inject_xsi_namespace(xml_text: str) -> str:
    """
    Declare the `xsi` prefix on the ClinicalDocument element when missing.

    Many exported documents use `xsi:type` on observation values without
    declaring the namespace, which makes them unparsable.
    """
    if "xmlns:xsi" in xml_text:
        return xml_text
    match = _CLINICAL_DOCUMENT_TAG.search(xml_text)
    if match is None:
        return xml_text
    end = match.end()
    return f'{xml_text[:end]} xmlns:xsi="{XSI_NS}"{xml_text[end:]}'


def parse_ccda_document(xml_text: str) -> Element:
    """Parse C-CDA text (after namespace repair) into an element tree root."""
    try:
        return fromstring(inject_xsi_namespace(xml_text))
    except (XMLParseError, DefusedXmlException) as e:
        raise ParseError(f"CCDA parsing failed: {e}") from e


def _attr(element: Optional[Element], name: str) -> Optional[str]:
    if element is None:
        return None
    value = element.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _element_text(element: Optional[Element]) -> Optional[str]:
    if element is None or element.text is None:
        return None
    text = " ".join(element.text.split())
    return text or None


class CcdaParser(FormatParser):
    """Parses C-CDA clinical documents in the `urn:hl7-org:v3` namespace."""

    @property
    def input_format(self) -> InputFormat:
        return InputFormat.CCDA

    def parse(
        self,
        file_path: Union[str, Path],
        field_mappings: Sequence[FieldMapping],
        job_id: str,
    ) -> ParsedFile:
        root = parse_ccda_document(self._read_text(file_path))

        patient = self._parse_patient(root, job_id)
        observations = [
            observation
            for observation in (
                self._parse_observation(element, patient.id)
                for element in root.iter(f"{{{HL7_NS}}}observation")
            )
            if observation is not None
        ]

        if not observations:
            logger.info("No observations found in C-CDA document; adding placeholder observation")
            observations.append(CanonicalObservation(
                patient_id=patient.id,
                code=PLACEHOLDER_DISPLAY,
                display=PLACEHOLDER_DISPLAY,
                value_string=PLACEHOLDER_VALUE,
                effective_date_time=utcnow(),
            ))

        logger.info("Parsed C-CDA file: 1 patient, %d observations", len(observations))
        return ParsedFile(patient=patient, observations=observations)

    # ------------------------------------------------------------------
    # Patient
    # ------------------------------------------------------------------

    def _parse_patient(self, root: Element, job_id: str) -> CanonicalPatient:
        role = root.find("hl7:recordTarget/hl7:patientRole", NS)
        person = role.find("hl7:patient", NS) if role is not None else None

        identifiers: List[CanonicalIdentifier] = []
        raw_id = None
        if role is not None:
            for id_element in role.findall("hl7:id", NS):
                extension = _attr(id_element, "extension")
                if extension is None:
                    continue
                if raw_id is None:
                    raw_id = extension
                root_oid = _attr(id_element, "root")
                if root_oid:
                    identifiers.append(CanonicalIdentifier(system=f"urn:oid:{root_oid}", value=extension))

        given_name = family_name = birth_date = None
        gender = DEFAULT_GENDER
        if person is not None:
            given_name = _element_text(person.find("hl7:name/hl7:given", NS))
            family_name = _element_text(person.find("hl7:name/hl7:family", NS))
            birth_date = parse_date(_attr(person.find("hl7:birthTime", NS), "value"))
            gender_code = _attr(person.find("hl7:administrativeGenderCode", NS), "code")
            if gender_code:
                gender = GENDER_CODES.get(gender_code.upper(), DEFAULT_GENDER)

        phone = email = None
        if role is not None:
            for telecom in role.findall("hl7:telecom", NS):
                value = _attr(telecom, "value") or ""
                if value.lower().startswith("tel:") and phone is None:
                    phone = value[4:].strip() or None
                elif value.lower().startswith("mailto:") and email is None:
                    email = value[7:].strip() or None

        return CanonicalPatient(
            id=prefix_patient_id(raw_id or job_id),
            given_name=given_name or DEFAULT_GIVEN_NAME,
            family_name=family_name or DEFAULT_FAMILY_NAME,
            birth_date=birth_date,
            gender=gender,
            phone=phone,
            email=email,
            address=self._parse_address(role),
            identifiers=identifiers,
        )

    @staticmethod
    def _parse_address(role: Optional[Element]) -> Optional[CanonicalAddress]:
        if role is None:
            return None
        addr = role.find("hl7:addr", NS)
        if addr is None:
            return None
        address = CanonicalAddress(
            street=_element_text(addr.find("hl7:streetAddressLine", NS)),
            city=_element_text(addr.find("hl7:city", NS)),
            state=_element_text(addr.find("hl7:state", NS)),
            postal_code=_element_text(addr.find("hl7:postalCode", NS)),
        )
        return None if address.is_empty() else address

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def _parse_observation(self, element: Element, patient_id: str) -> Optional[CanonicalObservation]:
        code_element = element.find("hl7:code", NS)
        display = _attr(code_element, "displayName")
        test_name = display or _attr(code_element, "code")
        if test_name is None:
            return None

        fields = {
            "patient_id": patient_id,
            "code": test_name,
            "display": display or test_name,
            "effective_date_time": self._effective_time(element),
        }

        value = element.find("hl7:value", NS)
        if value is not None:
            if (value.get(XSI_TYPE) or "").upper() == "PQ":
                fields["value_quantity"] = parse_number(_attr(value, "value"))
                fields["value_unit"] = _attr(value, "unit")
                if fields["value_quantity"] is None:
                    fields["value_string"] = _attr(value, "value")
            else:
                fields["value_string"] = (
                    _attr(value, "displayName")
                    or _attr(value, "value")
                    or _attr(value, "code")
                    or _element_text(value)
                )

        status = _attr(element.find("hl7:statusCode", NS), "code")
        if status:
            fields["status"] = "final" if status.lower() == "completed" else status.lower()

        return CanonicalObservation(**fields)

    @staticmethod
    def _effective_time(element: Element) -> Optional[datetime]:
        effective = element.find("hl7:effectiveTime", NS)
        if effective is None:
            return None
        value = _attr(effective, "value")
        if value is None:
            # Interval form: <effectiveTime><low value="..."/></effectiveTime>
            value = _attr(effective.find("hl7:low", NS), "value")
        return parse_datetime(value)
