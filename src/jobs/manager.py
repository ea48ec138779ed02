"""
Conversion Job Manager - lifecycle of file → FHIR bundle conversions.

State machine:
    Processing ──(worker success)──> Completed
    Processing ──(worker failure)──> Failed
    any state  ──(owner reset)─────> Failed

`start_conversion` validates synchronously, creates the job and returns at
once; parsing and bundle assembly run on the worker pool with their own
database session. Bundles are not stored: preview and download rebuild
them from the staged file.
"""
import json
import logging
import threading
import time
import uuid
from typing import Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from src.canonical import CanonicalField, ConversionStatus, FieldMapping, InputFormat
from src.detection import FieldDetector, extract_source_fields
from src.errors import (
    ConversionInProgressError,
    ConversionNotCompletedError,
    FileExpiredError,
    JobAccessError,
    JobNotFoundError,
    PersistenceError,
    StaleJobError,
    ValidationError,
)
from src.fhir import ConversionResult, FHIRConverter
from src.files import TempFileManager, staged_file_name
from src.models import ConversionJob, utcnow
from src.parsers import EXTENSION_FORMATS, get_parser, input_format_for
from src.schemas import FieldDetectionResponse, FhirBundlePreview, StartConversionRequest
from src.terminology import TerminologyResolver
from .events import BundleDownloaded, ConversionCompleted, DataRequestStatusAdvancer, EventBus, SYSTEM_ACTOR
from .repository import ConversionJobRepository
from .store import JobScopedStore
from .worker import ConversionWorkerPool

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE_BYTES = 50 * 1024 * 1024
RESET_REASON = "Job reset by user"

# Mappings a CSV conversion cannot run without
CSV_REQUIRED_MAPPINGS = [
    CanonicalField.PATIENT_IDENTIFIER,
    CanonicalField.PATIENT_GIVEN,
    CanonicalField.PATIENT_FAMILY,
]


def validate_field_mappings(field_mappings: Sequence[FieldMapping], input_format: InputFormat) -> None:
    """
    Reject duplicate targets, and missing required targets for CSV.

    Raises:
        ValidationError: Mappings cannot drive a conversion
    """
    seen = set()
    duplicates = []
    for mapping in field_mappings:
        if mapping.canonical_path in seen and mapping.canonical_path not in duplicates:
            duplicates.append(mapping.canonical_path)
        seen.add(mapping.canonical_path)
    if duplicates:
        raise ValidationError(f"Duplicate mapping for field(s): {', '.join(duplicates)}")

    if input_format == InputFormat.CSV:
        missing = [path for path in CSV_REQUIRED_MAPPINGS if path not in seen]
        if missing:
            raise ValidationError(f"Required field mapping missing: {', '.join(missing)}")


class ConversionJobManager:
    """
    Owns conversion jobs from submission to download.

    Usage:
        manager = ConversionJobManager(SessionLocal, TempFileManager(dir))
        job = manager.start_conversion(db, request, user_id)
        manager.wait_for(job.job_id)
        bundle_bytes = manager.download_bundle(db, job.job_id)
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        temp_files: TempFileManager,
        converter: Optional[FHIRConverter] = None,
        detector: Optional[FieldDetector] = None,
        worker_pool: Optional[ConversionWorkerPool] = None,
        event_bus: Optional[EventBus] = None,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE_BYTES,
    ):
        self.session_factory = session_factory
        self.temp_files = temp_files
        self.converter = converter or FHIRConverter()
        self.detector = detector or FieldDetector()
        self.worker_pool = worker_pool or ConversionWorkerPool()
        self.max_file_size_bytes = max_file_size_bytes

        if event_bus is None:
            event_bus = EventBus()
            DataRequestStatusAdvancer(session_factory).register(event_bus)
        self.event_bus = event_bus

        # job_id → field mappings; file_id → data request id
        self.field_mappings: JobScopedStore[str, List[FieldMapping]] = JobScopedStore()
        self.file_requests: JobScopedStore[str, str] = JobScopedStore()

    @classmethod
    def from_settings(cls, settings, session_factory: Callable[[], Session]) -> "ConversionJobManager":
        converter = FHIRConverter(
            resolver=TerminologyResolver.from_settings(settings),
            identifier_system=settings.default_identifier_system,
        )
        return cls(
            session_factory=session_factory,
            temp_files=TempFileManager(settings.temp_dir or None),
            converter=converter,
            worker_pool=ConversionWorkerPool(max_workers=settings.conversion_workers),
            max_file_size_bytes=settings.max_upload_size_mb * 1024 * 1024,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def link_file_to_request(self, file_id: str, request_id: str) -> None:
        """Remember which data request an upload belongs to."""
        self.file_requests.put(file_id, request_id)

    def start_conversion(self, db: Session, request: StartConversionRequest, user_id: str) -> ConversionJob:
        """
        Validate a conversion request and queue the job.

        Returns:
            The new job in Processing state

        Raises:
            FileExpiredError: Staged file not found
            ValidationError: Unsupported extension, oversize file or bad mappings
            ConversionInProgressError: Same user's job for this file still Processing
        """
        file_id = request.file_id
        logger.info("Starting conversion for file %s", file_id, extra={"file_id": file_id})

        if not self.temp_files.exists(file_id):
            raise FileExpiredError()

        file_name, file_size = self.temp_files.info(file_id)
        if not file_name:
            raise FileExpiredError()
        input_format = input_format_for(file_name)
        if input_format is None:
            raise ValidationError(
                f"Unsupported file type '{file_name}'. Allowed: {', '.join(sorted(EXTENSION_FORMATS))}"
            )
        if file_size > self.max_file_size_bytes:
            raise ValidationError(
                f"File size {file_size} bytes exceeds the {self.max_file_size_bytes} byte limit"
            )

        validate_field_mappings(request.field_mappings, input_format)

        repo = ConversionJobRepository(db)
        # Best effort: two concurrent submissions can both pass this check
        if repo.find_processing_for_file(user_id, file_id) is not None:
            raise ConversionInProgressError()

        linked_request_id = self.file_requests.evict(file_id)
        now = utcnow()
        job = ConversionJob(
            job_id=str(uuid.uuid4()),
            user_id=user_id,
            request_id=request.request_id or linked_request_id,
            file_id=file_id,
            input_format=input_format,
            status=ConversionStatus.PROCESSING,
            original_file_name=staged_file_name(file_id, file_name),
            file_size_bytes=file_size,
            created_at=now,
            updated_at=now,
            updated_by=user_id,
        )
        repo.create(job)

        mappings = list(request.field_mappings)
        self.field_mappings.put(job.job_id, mappings)
        self.worker_pool.submit(job.job_id, self._process, job.job_id, file_id, file_name, input_format, mappings)

        logger.info(
            "Conversion job created for file %s", file_id,
            extra={"job_id": job.job_id, "file_id": file_id, "request_id": job.request_id},
        )
        return job

    # ------------------------------------------------------------------
    # Background processing
    # ------------------------------------------------------------------

    def _process(
        self,
        job_id: str,
        file_id: str,
        file_name: str,
        input_format: InputFormat,
        mappings: List[FieldMapping],
        cancel_event: threading.Event,
    ) -> None:
        """Parse, convert and record the outcome. Runs on a worker thread."""
        started = time.perf_counter()
        log_extra = {"job_id": job_id, "file_id": file_id}
        logger.info("Background conversion started", extra=log_extra)

        try:
            result = self._build_bundle(job_id, file_id, file_name, input_format, mappings)
        except Exception as e:
            logger.error("Conversion failed for job %s: %s", job_id, e, exc_info=True, extra=log_extra)
            self._record_failure(job_id, str(e) or type(e).__name__, cancel_event)
            return

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        if cancel_event.is_set():
            logger.info("Conversion job %s was reset; discarding result", job_id, extra=log_extra)
            return

        db = self.session_factory()
        try:
            repo = ConversionJobRepository(db)
            job = repo.find(job_id)
            if job is None or job.status != ConversionStatus.PROCESSING:
                logger.info("Conversion job %s no longer processing; discarding result", job_id, extra=log_extra)
                return

            job.status = ConversionStatus.COMPLETED
            job.completed_at = utcnow()
            job.processing_time_ms = elapsed_ms
            job.patients_count = result.patient_count
            job.observations_count = result.observation_count
            job.updated_at = job.completed_at
            job.updated_by = SYSTEM_ACTOR
            repo.commit()
            request_id = job.request_id
        except StaleJobError:
            logger.warning("Conversion job %s changed while processing; result discarded", job_id, extra=log_extra)
            return
        except PersistenceError as e:
            logger.error("Could not record completion of job %s: %s", job_id, e, extra=log_extra)
            return
        finally:
            db.close()

        logger.info(
            "Conversion completed: %d patient(s), %d observation(s) in %d ms",
            result.patient_count, result.observation_count, elapsed_ms, extra=log_extra,
        )
        self.event_bus.publish(ConversionCompleted(
            job_id=job_id,
            request_id=request_id,
            patients_count=result.patient_count,
            observations_count=result.observation_count,
        ))

    def _record_failure(self, job_id: str, message: str, cancel_event: threading.Event) -> None:
        self.field_mappings.evict(job_id)
        if cancel_event.is_set():
            return

        db = self.session_factory()
        try:
            repo = ConversionJobRepository(db)
            job = repo.find(job_id)
            if job is None or job.status != ConversionStatus.PROCESSING:
                return
            job.status = ConversionStatus.FAILED
            job.error_message = message
            job.updated_at = utcnow()
            job.updated_by = SYSTEM_ACTOR
            repo.commit()
        except StaleJobError:
            logger.warning("Conversion job %s changed while failing; failure discarded", job_id, extra={"job_id": job_id})
        except PersistenceError as e:
            logger.error("Could not record failure of job %s: %s", job_id, e, extra={"job_id": job_id})
        finally:
            db.close()

    def _build_bundle(
        self,
        job_id: str,
        file_id: str,
        file_name: str,
        input_format: InputFormat,
        mappings: Sequence[FieldMapping],
    ) -> ConversionResult:
        path = self.temp_files.path(file_id, file_name)
        parsed = get_parser(input_format).parse(path, mappings, job_id)
        logger.info(
            "Parsed 1 patient and %d observations", len(parsed.observations),
            extra={"job_id": job_id},
        )
        return self.converter.convert(parsed.patient, parsed.observations, job_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_status(self, db: Session, job_id: str) -> ConversionJob:
        job = ConversionJobRepository(db).find(job_id)
        if job is None:
            raise JobNotFoundError()
        return job

    def get_by_request(self, db: Session, request_id: str) -> ConversionJob:
        job = ConversionJobRepository(db).find_by_request(request_id)
        if job is None:
            raise JobNotFoundError("No conversion job found for this request")
        return job

    def get_history(self, db: Session, user_id: str) -> List[ConversionJob]:
        return ConversionJobRepository(db).find_for_user(user_id)

    # ------------------------------------------------------------------
    # Bundle output
    # ------------------------------------------------------------------

    def _completed_job(self, db: Session, job_id: str) -> ConversionJob:
        job = self.get_status(db, job_id)
        if job.status != ConversionStatus.COMPLETED:
            raise ConversionNotCompletedError()
        return job

    def _regenerate(self, job: ConversionJob) -> ConversionResult:
        """Rebuild a completed job's bundle from its staged file."""
        if not self.temp_files.exists(job.file_id):
            raise FileExpiredError()
        file_name = job.original_file_name[len(job.file_id) + 1:]

        mappings = self.field_mappings.get(job.job_id)
        if not mappings:
            mappings = self._recreate_mappings(job.file_id, file_name, job.input_format)
        return self._build_bundle(job.job_id, job.file_id, file_name, job.input_format, mappings)

    def _recreate_mappings(self, file_id: str, file_name: str, input_format: InputFormat) -> List[FieldMapping]:
        """Mappings re-detected from the file's own column names."""
        columns = extract_source_fields(self.temp_files.path(file_id, file_name), input_format)
        mappings = [
            FieldMapping(source_column=field.column_name, canonical_path=field.suggested_canonical_path)
            for field in self.detector.detect(columns)
        ]
        logger.info("Recreated %d field mappings from file headers", len(mappings), extra={"file_id": file_id})
        return mappings

    def preview(self, db: Session, job_id: str, sample_size: int = 3) -> FhirBundlePreview:
        job = self._completed_job(db, job_id)
        result = self._regenerate(job)
        return FhirBundlePreview(
            job_id=job.job_id,
            bundle_id=result.bundle.id,
            patient_count=result.patient_count,
            observation_count=result.observation_count,
            sample_full_urls=result.full_urls[:sample_size],
        )

    def download_bundle(self, db: Session, job_id: str) -> bytes:
        """
        Bundle JSON for a completed job.

        Evicts the job's cached mappings and advances a linked data request.
        """
        job = self._completed_job(db, job_id)
        result = self._regenerate(job)
        bundle_bytes = json.dumps(result.bundle_dict, indent=2).encode("utf-8")

        self.field_mappings.evict(job_id)
        logger.info("FHIR bundle generated (%d bytes)", len(bundle_bytes), extra={"job_id": job_id})

        self.event_bus.publish(BundleDownloaded(
            job_id=job.job_id,
            request_id=job.request_id,
            size_bytes=len(bundle_bytes),
        ))
        return bundle_bytes

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    def reset_job(self, db: Session, job_id: str, user_id: str, reason: Optional[str] = None) -> ConversionJob:
        """
        Force a job to Failed. Only the job's owner may reset it.

        Raises:
            JobNotFoundError: Unknown job
            JobAccessError: Caller does not own the job
        """
        job = self.get_status(db, job_id)
        if job.user_id != user_id:
            raise JobAccessError()

        # Signal first so a running worker abandons its terminal write
        self.worker_pool.cancel(job_id)

        repo = ConversionJobRepository(db)
        self._apply_reset(job, user_id, reason)
        try:
            repo.commit()
        except StaleJobError:
            # The worker committed first; reset wins over its terminal state
            logger.info("Conversion job %s changed during reset; retrying", job_id, extra={"job_id": job_id})
            db.refresh(job)
            self._apply_reset(job, user_id, reason)
            repo.commit()

        self.field_mappings.evict(job_id)
        logger.info("Conversion job reset by user", extra={"job_id": job_id})
        return job

    @staticmethod
    def _apply_reset(job: ConversionJob, user_id: str, reason: Optional[str]) -> None:
        job.status = ConversionStatus.FAILED
        job.error_message = reason or RESET_REASON
        job.updated_at = utcnow()
        job.updated_by = user_id

    # ------------------------------------------------------------------
    # Field detection
    # ------------------------------------------------------------------

    def detect_fields(self, file_id: str) -> FieldDetectionResponse:
        if not self.temp_files.exists(file_id):
            raise FileExpiredError()

        file_name, _ = self.temp_files.info(file_id)
        input_format = input_format_for(file_name) or InputFormat.CSV
        columns = extract_source_fields(self.temp_files.path(file_id, file_name), input_format)
        detected = self.detector.detect(columns)

        logger.info("Detected %d field mappings", len(detected), extra={"file_id": file_id})
        return FieldDetectionResponse(
            file_id=file_id,
            detected_fields=detected,
            required_mappings=self.detector.required_canonical_fields(),
            available_fhir_fields=self.detector.available_canonical_fields(),
        )

    def available_fields(self) -> List[str]:
        return self.detector.available_canonical_fields()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def wait_for(self, job_id: str, timeout: Optional[float] = None) -> bool:
        return self.worker_pool.wait(job_id, timeout)

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the worker pool, then release the terminology client.

        With wait=False queued jobs are dropped and running ones are told to
        discard their results; the resolver still closes only after they exit.
        """
        self.worker_pool.shutdown(wait=wait)
        self.worker_pool.join()
        self.converter.resolver.close()
