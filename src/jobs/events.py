"""
In-process conversion events.

The job manager publishes events; subscribers such as the data-request
advancer react in their own database session. Handler failures are logged
and never reach the publisher.
"""
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Optional, Type

from sqlalchemy.exc import SQLAlchemyError

from src.canonical import DataRequestStatus
from src.models import utcnow
from .repository import DataRequestRepository

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "System"


@dataclass(frozen=True)
class ConversionCompleted:
    job_id: str
    request_id: Optional[str]
    patients_count: int
    observations_count: int


@dataclass(frozen=True)
class BundleDownloaded:
    job_id: str
    request_id: Optional[str]
    size_bytes: int


class EventBus:
    """Synchronous publish/subscribe keyed by event type."""

    def __init__(self):
        self._handlers: DefaultDict[Type, List[Callable]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type, handler: Callable) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def publish(self, event) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler %s failed for %s",
                    getattr(handler, "__qualname__", repr(handler)), type(event).__name__,
                    extra={"job_id": getattr(event, "job_id", None)},
                )


class DataRequestStatusAdvancer:
    """
    Advances a linked data request one step per conversion event:
    Approved → DataReady on completion, DataReady → Completed on download.
    Requests in any other state are left alone.
    """

    TRANSITIONS = {
        ConversionCompleted: (DataRequestStatus.APPROVED, DataRequestStatus.DATA_READY),
        BundleDownloaded: (DataRequestStatus.DATA_READY, DataRequestStatus.COMPLETED),
    }

    def __init__(self, session_factory: Callable):
        self.session_factory = session_factory

    def register(self, bus: EventBus) -> None:
        for event_type in self.TRANSITIONS:
            bus.subscribe(event_type, self.handle)

    def handle(self, event) -> bool:
        """Apply the transition for `event`; True if the request changed."""
        if not event.request_id:
            return False
        expected, target = self.TRANSITIONS[type(event)]

        db = self.session_factory()
        try:
            request = DataRequestRepository(db).find(event.request_id)
            if request is None or request.status != expected:
                return False
            request.status = target
            request.updated_at = utcnow()
            request.updated_by = SYSTEM_ACTOR
            db.commit()
            logger.info(
                "DataRequest %s marked as %s", event.request_id, target.value,
                extra={"job_id": event.job_id, "request_id": event.request_id},
            )
            return True
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()
