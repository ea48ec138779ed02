"""
FHIR Converter Service

Converts one parsed file (canonical patient + observations) into a FHIR
Bundle.

Orchestrates:
1. Patient resource creation
2. Observation resources (LOINC codes, UCUM units via the resolver)
3. Bundle assembly (Patient first, then Observations in source order)
"""
import logging
from dataclasses import dataclass
from typing import Dict, Any, Optional, List, Sequence

from fhir.resources.bundle import Bundle
from fhir.resources.observation import Observation
from fhir.resources.patient import Patient

from src.canonical import CanonicalObservation, CanonicalPatient
from src.terminology import TerminologyResolver
from .bundler import FHIRBundler, bundle_id_for
from .mappers import DEFAULT_IDENTIFIER_SYSTEM, ObservationMapper, PatientMapper

logger = logging.getLogger(__name__)


@dataclass
class ConversionResult:
    """Result of FHIR conversion."""
    bundle: Bundle
    bundle_dict: Dict[str, Any]
    patient_count: int
    observation_count: int
    skipped_observations: int = 0

    @property
    def full_urls(self) -> List[str]:
        return [entry["fullUrl"] for entry in self.bundle_dict.get("entry", [])]


class FHIRConverter:
    """
    Converts canonical entities to a FHIR Bundle.

    Stateless apart from its collaborators; safe to share between workers.

    Usage:
        converter = FHIRConverter(TerminologyResolver())
        result = converter.convert(patient, observations, job_id)
        bundle_json = result.bundle_dict
    """

    def __init__(
        self,
        resolver: Optional[TerminologyResolver] = None,
        identifier_system: str = DEFAULT_IDENTIFIER_SYSTEM,
    ):
        self.resolver = resolver or TerminologyResolver()
        self.identifier_system = identifier_system

    def convert_patient(self, patient: CanonicalPatient) -> Patient:
        return PatientMapper.map(patient, self.identifier_system)

    def convert_observation(self, observation: CanonicalObservation) -> Observation:
        resource = ObservationMapper.map(observation, self.resolver)
        logger.debug(
            "Converted observation %s with code %s",
            resource.id, resource.code.coding[0].code,
        )
        return resource

    def create_bundle(self, patient: Patient, observations: Sequence[Observation], job_id: str) -> Bundle:
        """
        Assemble a collection Bundle: the Patient, then each Observation.

        Observations referencing a different patient are still included,
        with a warning.
        """
        bundler = FHIRBundler()
        bundler.add_resource(patient)

        expected_reference = f"Patient/{patient.id}"
        for observation in observations:
            reference = observation.subject.reference if observation.subject else None
            if reference != expected_reference:
                logger.warning(
                    "Observation %s does not reference patient %s (subject: %s)",
                    observation.id, patient.id, reference,
                )
            bundler.add_resource(observation)

        return bundler.build(bundle_id_for(job_id))

    def convert(
        self,
        patient: CanonicalPatient,
        observations: Sequence[CanonicalObservation],
        job_id: str,
    ) -> ConversionResult:
        """
        Run the whole conversion for one parsed file.

        Observations that fail to convert are logged and skipped; counts
        reflect what entered the bundle.
        """
        patient_resource = self.convert_patient(patient)

        observation_resources: List[Observation] = []
        skipped = 0
        for observation in observations:
            try:
                observation_resources.append(self.convert_observation(observation))
            except (ValueError, TypeError) as e:
                # pydantic validation errors are ValueErrors
                skipped += 1
                logger.error("Failed to convert observation %s: %s", observation.id, e)

        bundle = self.create_bundle(patient_resource, observation_resources, job_id)

        logger.info(
            "Created FHIR bundle %s with 1 patient and %d observations",
            bundle.id, len(observation_resources),
        )
        return ConversionResult(
            bundle=bundle,
            bundle_dict=FHIRBundler.to_dict(bundle),
            patient_count=1,
            observation_count=len(observation_resources),
            skipped_observations=skipped,
        )
