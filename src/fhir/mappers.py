"""
FHIR Resource Mappers

Maps canonical conversion entities to FHIR resources using the
fhir.resources library, which validates every resource on construction.

Mappings:
- CanonicalPatient → Patient
- CanonicalObservation → Observation (LOINC code, UCUM quantity)
"""
import re
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fhir.resources.observation import Observation
from fhir.resources.patient import Patient

from src.canonical import CanonicalObservation, CanonicalPatient, prefix_patient_id, strip_patient_id
from src.terminology import OBSERVATION_CATEGORY_SYSTEM, TerminologyResolver

DEFAULT_IDENTIFIER_SYSTEM = "http://hospital.org/patient-id"

FHIR_ID_MAX_LENGTH = 64
_INVALID_ID_CHARS = re.compile(r"[^A-Za-z0-9\-.]")

GENDER_CODES = {
    "male": "male",
    "m": "male",
    "female": "female",
    "f": "female",
    "other": "other",
    "o": "other",
}

OBSERVATION_STATUSES = {"final", "preliminary", "registered", "amended", "corrected", "cancelled"}

CATEGORY_DISPLAYS = {
    "laboratory": "Laboratory",
    "vital-signs": "Vital Signs",
}


def fhir_id(raw_id: str) -> str:
    """Coerce an arbitrary string into the FHIR id alphabet ([A-Za-z0-9-.], max 64)."""
    return _INVALID_ID_CHARS.sub("-", raw_id)[:FHIR_ID_MAX_LENGTH]


def patient_resource_id(patient_id: str) -> str:
    """Resource id for a patient: `patient-` prefixed once, then sanitized."""
    return fhir_id(prefix_patient_id(patient_id))


def patient_reference(patient_id: str) -> str:
    return f"Patient/{patient_resource_id(patient_id)}"


def map_gender(gender: Optional[str]) -> str:
    if not gender:
        return "unknown"
    return GENDER_CODES.get(gender.strip().lower(), "unknown")


def map_observation_status(status: Optional[str]) -> str:
    normalized = (status or "").strip().lower()
    return normalized if normalized in OBSERVATION_STATUSES else "final"


def format_fhir_datetime(value: datetime) -> str:
    """ISO-8601 with offset; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class PatientMapper:
    """Maps CanonicalPatient to FHIR Patient resource."""

    @staticmethod
    def map(patient: CanonicalPatient, identifier_system: str = DEFAULT_IDENTIFIER_SYSTEM) -> Patient:
        """
        Convert a canonical patient to a FHIR Patient resource.

        Args:
            patient: Canonical patient from a parser
            identifier_system: System for the default identifier

        Returns:
            FHIR Patient resource
        """
        patient_dict: Dict[str, Any] = {
            "resourceType": "Patient",
            "id": patient_resource_id(patient.id),
            "gender": map_gender(patient.gender),
        }

        # Identifiers from the source, else one default identifier
        if patient.identifiers:
            patient_dict["identifier"] = [
                {"system": identifier.system, "value": identifier.value}
                for identifier in patient.identifiers
            ]
        else:
            patient_dict["identifier"] = [{
                "system": identifier_system,
                "value": strip_patient_id(prefix_patient_id(patient.id)),
            }]

        if patient.given_name or patient.family_name:
            name: Dict[str, Any] = {}
            if patient.given_name:
                name["given"] = [patient.given_name]
            if patient.family_name:
                name["family"] = patient.family_name
            patient_dict["name"] = [name]

        if patient.birth_date:
            patient_dict["birthDate"] = patient.birth_date.strftime("%Y-%m-%d")

        telecom = []
        if patient.phone:
            telecom.append({"system": "phone", "use": "home", "value": patient.phone})
        if patient.email:
            telecom.append({"system": "email", "use": "home", "value": patient.email})
        if telecom:
            patient_dict["telecom"] = telecom

        if patient.address and not patient.address.is_empty():
            address: Dict[str, Any] = {}
            if patient.address.street:
                address["line"] = [patient.address.street]
            if patient.address.city:
                address["city"] = patient.address.city
            if patient.address.state:
                address["state"] = patient.address.state
            if patient.address.postal_code:
                address["postalCode"] = patient.address.postal_code
            patient_dict["address"] = [address]

        return Patient(**patient_dict)


class ObservationMapper:
    """Maps CanonicalObservation to FHIR Observation resources."""

    @staticmethod
    def map(observation: CanonicalObservation, resolver: TerminologyResolver) -> Observation:
        """
        Convert a canonical observation to a FHIR Observation resource.

        Args:
            observation: Canonical observation from a parser
            resolver: Terminology resolver for LOINC / UCUM coding

        Returns:
            FHIR Observation resource
        """
        obs_dict: Dict[str, Any] = {
            "resourceType": "Observation",
            "id": fhir_id(observation.id),
            "status": map_observation_status(observation.status),
            "subject": {"reference": patient_reference(observation.patient_id)},
        }

        # Code (LOINC when known)
        system, code, display = resolver.resolve_observation_code(observation.code)
        obs_dict["code"] = {
            "coding": [{"system": system, "code": code, "display": display}],
            "text": observation.display or observation.code,
        }

        if observation.category:
            obs_dict["category"] = [{
                "coding": [{
                    "system": OBSERVATION_CATEGORY_SYSTEM,
                    "code": observation.category,
                    "display": CATEGORY_DISPLAYS.get(observation.category, observation.category),
                }]
            }]

        # Value (UCUM units)
        if observation.value_quantity is not None:
            unit_system, unit_code, unit_display = resolver.resolve_unit_code(observation.value_unit)
            obs_dict["valueQuantity"] = {
                "value": observation.value_quantity,
                "unit": unit_display,
                "system": unit_system,
                "code": unit_code,
            }
        elif observation.value_string:
            obs_dict["valueString"] = observation.value_string

        if observation.effective_date_time:
            obs_dict["effectiveDateTime"] = format_fhir_datetime(observation.effective_date_time)

        return Observation(**obs_dict)
