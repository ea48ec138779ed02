"""
LOINC Lookup Client - FHIR terminology server `$lookup` integration.

Queries `{server}/CodeSystem/$lookup?system=http://loinc.org&display=<name>`
and reads `code` / `display` from the returned Parameters resource.

The client never raises: every outcome is reported as a LookupResult so the
resolver can fall back to its dictionaries.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.errors import TerminologyLookupError
from .dictionaries import LOINC_SYSTEM

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 3.0


class LookupOutcome(str, Enum):
    """How a terminology server lookup ended"""
    FOUND = "found"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"


@dataclass
class LookupResult:
    """
    Result of a single terminology server lookup.

    Attributes:
        outcome: FOUND, NOT_FOUND, TIMEOUT or UNAVAILABLE
        code: LOINC code when found
        display: LOINC display when found
        error: Failure description for TIMEOUT / UNAVAILABLE
    """
    outcome: LookupOutcome
    code: Optional[str] = None
    display: Optional[str] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.outcome == LookupOutcome.FOUND

    @classmethod
    def ok(cls, code: str, display: str, **metadata) -> "LookupResult":
        return cls(outcome=LookupOutcome.FOUND, code=code, display=display, metadata=metadata)

    @classmethod
    def not_found(cls, **metadata) -> "LookupResult":
        return cls(outcome=LookupOutcome.NOT_FOUND, metadata=metadata)

    @classmethod
    def timeout(cls, error: str, **metadata) -> "LookupResult":
        return cls(outcome=LookupOutcome.TIMEOUT, error=error, metadata=metadata)

    @classmethod
    def unavailable(cls, error: str, **metadata) -> "LookupResult":
        return cls(outcome=LookupOutcome.UNAVAILABLE, error=error, metadata=metadata)


def parse_lookup_parameters(payload: Any) -> Optional[tuple]:
    """
    Extract (code, display) from a FHIR Parameters payload.

    Returns None when the payload is a well-formed Parameters resource
    without both values.

    Raises:
        TerminologyLookupError: Payload is not a Parameters-shaped object
    """
    if not isinstance(payload, dict):
        raise TerminologyLookupError("Terminology response is not a JSON object")
    parameters = payload.get("parameter")
    if parameters is None:
        return None
    if not isinstance(parameters, list):
        raise TerminologyLookupError("Terminology response 'parameter' is not a list")

    code = display = None
    for parameter in parameters:
        if not isinstance(parameter, dict):
            continue
        name = parameter.get("name")
        if name == "code" and parameter.get("valueCode"):
            code = parameter["valueCode"]
        elif name == "display" and parameter.get("valueString"):
            display = parameter["valueString"]

    if code and display:
        return code, display
    return None


class LoincLookupClient:
    """
    Synchronous LOINC lookup against a FHIR terminology server.

    Thread-safe: httpx.Client may be shared between worker threads.
    """

    def __init__(
        self,
        base_url: str = "https://tx.fhir.org/r4",
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ):
        """
        Initialize the lookup client.

        Args:
            base_url: Terminology server FHIR base URL
            timeout: Per-request timeout in seconds
            client: Pre-built httpx client (tests inject a MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def lookup(self, test_name: str) -> LookupResult:
        """
        Look up the LOINC code for a test display name.

        Args:
            test_name: Trimmed, non-empty test name

        Returns:
            LookupResult; never raises
        """
        try:
            response = self._get(test_name)
        except httpx.TimeoutException as e:
            logger.debug("LOINC lookup timed out for '%s': %s", test_name, e)
            return LookupResult.timeout(f"Terminology lookup timed out: {e}", search_term=test_name)
        except httpx.HTTPError as e:
            logger.debug("LOINC lookup failed for '%s': %s", test_name, e)
            return LookupResult.unavailable(f"Terminology server unavailable: {e}", search_term=test_name)
        except Exception as e:
            # Closed client, malformed base URL
            logger.warning("LOINC lookup could not be sent for '%s': %s", test_name, e)
            return LookupResult.unavailable(f"Terminology lookup failed: {e}", search_term=test_name)

        if response.status_code == 404:
            return LookupResult.not_found(search_term=test_name, status_code=404)
        if response.status_code >= 400:
            return LookupResult.unavailable(
                f"Terminology server error ({response.status_code})",
                search_term=test_name,
                status_code=response.status_code,
            )

        try:
            match = parse_lookup_parameters(response.json())
        except (ValueError, TerminologyLookupError) as e:
            logger.debug("Malformed terminology response for '%s': %s", test_name, e)
            return LookupResult.unavailable(f"Malformed terminology response: {e}", search_term=test_name)

        if match is None:
            return LookupResult.not_found(search_term=test_name)

        code, display = match
        return LookupResult.ok(code, display, search_term=test_name)

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(2),
        wait=wait_exponential(min=0.1, max=1),
        reraise=True,
    )
    def _get(self, test_name: str) -> httpx.Response:
        return self._client.get(
            f"{self.base_url}/CodeSystem/$lookup",
            params={"system": LOINC_SYSTEM, "display": test_name},
            timeout=self.timeout,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        if not self._client.is_closed:
            self._client.close()
