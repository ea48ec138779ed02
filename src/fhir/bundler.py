"""
FHIR Bundle Assembler

Collects one Patient and its Observations into a collection Bundle.
Entries keep insertion order and are addressed as `<ResourceType>/<id>`.
"""
import json
from typing import List, Dict, Any
from datetime import datetime, timezone

from fhir.resources.bundle import Bundle, BundleEntry
from fhir.resources.resource import Resource


def bundle_id_for(job_id: str) -> str:
    return f"bundle-{job_id}"


class FHIRBundler:
    """
    Accumulates entries for a single conversion's Bundle.

    Not thread-safe; create one per conversion.
    """

    def __init__(self):
        self.entries: List[BundleEntry] = []

    def add_resource(self, resource: Resource) -> None:
        """
        Append a resource entry.

        Args:
            resource: Patient or Observation resource with an id
        """
        self.entries.append(BundleEntry(
            fullUrl=f"{resource.resource_type}/{resource.id}",
            resource=resource,
        ))

    def build(self, bundle_id: str) -> Bundle:
        """
        Create the collection Bundle from the accumulated entries.

        Args:
            bundle_id: Id of the Bundle resource, `bundle-<jobId>`
        """
        return Bundle(
            id=bundle_id,
            type="collection",
            timestamp=datetime.now(timezone.utc).isoformat(),
            entry=self.entries or None,
        )

    @staticmethod
    def to_dict(bundle: Bundle) -> Dict[str, Any]:
        """JSON-compatible dictionary with empty elements omitted."""
        return json.loads(bundle.json(exclude_none=True))

    @property
    def resource_count(self) -> int:
        return len(self.entries)

    def get_full_urls(self) -> List[str]:
        return [entry.fullUrl for entry in self.entries]
