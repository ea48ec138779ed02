"""
Conversion job lifecycle: submission, background processing, output.

Components:
- manager: ConversionJobManager state machine
- worker: supervised thread pool with per-job cancellation
- store: job-scoped caches (field mappings, file → request links)
- events: completion/download events and the data-request advancer
- repository: SQLAlchemy persistence boundary
"""
from .manager import ConversionJobManager, validate_field_mappings, CSV_REQUIRED_MAPPINGS, RESET_REASON
from .worker import ConversionWorkerPool
from .store import JobScopedStore
from .events import EventBus, ConversionCompleted, BundleDownloaded, DataRequestStatusAdvancer
from .repository import ConversionJobRepository, DataRequestRepository

__all__ = [
    "ConversionJobManager",
    "validate_field_mappings",
    "CSV_REQUIRED_MAPPINGS",
    "RESET_REASON",
    "ConversionWorkerPool",
    "JobScopedStore",
    "EventBus",
    "ConversionCompleted",
    "BundleDownloaded",
    "DataRequestStatusAdvancer",
    "ConversionJobRepository",
    "DataRequestRepository",
]
