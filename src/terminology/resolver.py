"""
Terminology Resolver - test names → LOINC, units → UCUM.

Resolution order for observation codes:
1. Terminology server (only when a lookup client is configured)
2. Curated LOINC dictionary (case-insensitive exact match)
3. Text fallback under the observation-category system

Every method returns a valid (system, code, display) triple and never raises.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .dictionaries import (
    DATA_ABSENT_REASON_SYSTEM,
    LOINC_SYSTEM,
    OBSERVATION_CATEGORY_SYSTEM,
    UCUM_SYSTEM,
    lookup_loinc,
    lookup_ucum,
)
from .lookup import LoincLookupClient, LookupResult

logger = logging.getLogger(__name__)

CodeTriple = Tuple[str, str, str]

ABSENT_CODE: CodeTriple = (DATA_ABSENT_REASON_SYSTEM, "unknown", "Unknown")
DIMENSIONLESS_UNIT: CodeTriple = (UCUM_SYSTEM, "1", "1")
FALLBACK_CODE = "survey"


class ResolutionSource(str, Enum):
    """Tier that produced a code resolution"""
    NETWORK = "network"
    DICTIONARY = "dictionary"
    FALLBACK = "fallback"
    ABSENT = "absent"


@dataclass(frozen=True)
class CodeResolution:
    """A resolved coding plus where it came from."""
    system: str
    code: str
    display: str
    source: ResolutionSource
    lookup: Optional[LookupResult] = None

    def as_tuple(self) -> CodeTriple:
        return self.system, self.code, self.display


class TerminologyResolver:
    """
    Maps free-text test names and units to standard codings.

    Holds no mutable state; one instance is shared by all workers.
    """

    def __init__(self, lookup_client: Optional[LoincLookupClient] = None):
        """
        Args:
            lookup_client: Terminology server client; None disables the network tier
        """
        self.lookup_client = lookup_client

    @classmethod
    def from_settings(cls, settings) -> "TerminologyResolver":
        """Build a resolver, enabling the network tier only when configured."""
        if not settings.terminology_lookup_enabled:
            return cls()
        return cls(LoincLookupClient(
            base_url=settings.terminology_server_url,
            timeout=settings.terminology_timeout_seconds,
        ))

    # ------------------------------------------------------------------
    # Observation codes
    # ------------------------------------------------------------------

    def resolve_observation_code(self, test_name: Optional[str]) -> CodeTriple:
        return self.describe_observation_code(test_name).as_tuple()

    def describe_observation_code(self, test_name: Optional[str]) -> CodeResolution:
        """Resolve a test name and report which tier answered."""
        if test_name is None or not str(test_name).strip():
            logger.warning("Empty test name provided for LOINC mapping")
            return CodeResolution(*ABSENT_CODE, source=ResolutionSource.ABSENT)

        name = str(test_name).strip()

        lookup_result = None
        if self.lookup_client is not None:
            lookup_result = self.lookup_client.lookup(name)
            if lookup_result.found:
                logger.info("LOINC code retrieved from terminology server for '%s': %s", name, lookup_result.code)
                return CodeResolution(
                    LOINC_SYSTEM,
                    lookup_result.code,
                    lookup_result.display,
                    source=ResolutionSource.NETWORK,
                    lookup=lookup_result,
                )
            logger.debug("Terminology server lookup for '%s' ended with %s", name, lookup_result.outcome.value)

        mapping = lookup_loinc(name)
        if mapping is not None:
            code, display = mapping
            logger.debug("LOINC mapping found in dictionary for '%s': %s", name, code)
            return CodeResolution(
                LOINC_SYSTEM, code, display,
                source=ResolutionSource.DICTIONARY,
                lookup=lookup_result,
            )

        logger.warning("No LOINC mapping found for test name '%s', using text fallback", name)
        return CodeResolution(
            OBSERVATION_CATEGORY_SYSTEM, FALLBACK_CODE, name,
            source=ResolutionSource.FALLBACK,
            lookup=lookup_result,
        )

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def resolve_unit_code(self, unit: Optional[str]) -> CodeTriple:
        return self.describe_unit_code(unit).as_tuple()

    def describe_unit_code(self, unit: Optional[str]) -> CodeResolution:
        if unit is None or not str(unit).strip():
            return CodeResolution(*DIMENSIONLESS_UNIT, source=ResolutionSource.ABSENT)

        normalized = str(unit).strip()
        mapping = lookup_ucum(normalized)
        if mapping is not None:
            code, display = mapping
            return CodeResolution(UCUM_SYSTEM, code, display, source=ResolutionSource.DICTIONARY)

        logger.warning("No UCUM mapping found for unit '%s', using as-is", normalized)
        return CodeResolution(UCUM_SYSTEM, normalized, normalized, source=ResolutionSource.FALLBACK)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def has_loinc_mapping(self, test_name: Optional[str]) -> bool:
        return bool(test_name and test_name.strip()) and lookup_loinc(test_name) is not None

    def has_ucum_mapping(self, unit: Optional[str]) -> bool:
        return bool(unit and unit.strip()) and lookup_ucum(unit) is not None

    def close(self) -> None:
        if self.lookup_client is not None:
            self.lookup_client.close()
