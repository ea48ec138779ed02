"""
Conversion Job Tests

Tests for:
1. Job submission validation (file, extension, size, mappings, in-progress guard)
2. Background processing outcomes (Completed / Failed)
3. Reset semantics and owner checks
4. Bundle preview / download and data request advancement
5. History, request lookup, job-scoped caches and the worker pool
"""
import json
import threading
from contextlib import contextmanager
from unittest.mock import MagicMock, call

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from src.canonical import ConversionStatus, DataRequestStatus, FieldMapping, InputFormat
from src.database import Base
from src.errors import (
    ConversionInProgressError,
    ConversionNotCompletedError,
    FileExpiredError,
    JobAccessError,
    JobNotFoundError,
    ValidationError,
)
from src.fhir import FHIRConverter
from src.files import TempFileManager
from src.jobs import (
    RESET_REASON,
    BundleDownloaded,
    ConversionCompleted,
    ConversionJobManager,
    ConversionWorkerPool,
    DataRequestStatusAdvancer,
    EventBus,
    JobScopedStore,
    validate_field_mappings,
)
from src.jobs.repository import ConversionJobRepository
from src.models import ConversionJob, DataRequest
from src.schemas import StartConversionRequest

# Test database (SQLite in /tmp for container compatibility)
SQLALCHEMY_DATABASE_URL = "sqlite:////tmp/test_conversion_jobs.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

OWNER = "clinician-1"
OTHER_USER = "clinician-2"


# ============================================================================
# Sample Data for Testing
# ============================================================================

SAMPLE_CSV = b"""patient_id,first_name,last_name,dob,gender,test_name,result,unit,test_date
P001,John,Doe,1980-05-15,M,Hemoglobin,13.5,g/dL,2024-01-15
P001,John,Doe,1980-05-15,M,Glucose,95,mg/dL,2024-01-15
"""

CSV_MAPPINGS = [
    FieldMapping(source_column="patient_id", canonical_path="patient.identifier"),
    FieldMapping(source_column="first_name", canonical_path="patient.name.given"),
    FieldMapping(source_column="last_name", canonical_path="patient.name.family"),
    FieldMapping(source_column="dob", canonical_path="patient.birthDate"),
    FieldMapping(source_column="gender", canonical_path="patient.gender"),
    FieldMapping(source_column="test_name", canonical_path="observation.code"),
    FieldMapping(source_column="result", canonical_path="observation.valueQuantity.value"),
    FieldMapping(source_column="unit", canonical_path="observation.valueQuantity.unit"),
    FieldMapping(source_column="test_date", canonical_path="observation.effectiveDateTime"),
]

EMPTY_CCDA = b'<ClinicalDocument xmlns="urn:hl7-org:v3"></ClinicalDocument>'


@pytest.fixture(autouse=True)
def clean_tables():
    """Start every test with empty tables"""
    db = TestingSessionLocal()
    db.query(ConversionJob).delete()
    db.query(DataRequest).delete()
    db.commit()
    db.close()
    yield


@pytest.fixture
def temp_files(tmp_path):
    return TempFileManager(tmp_path / "uploads")


@pytest.fixture
def manager(temp_files):
    """Manager with a real worker pool"""
    manager = ConversionJobManager(
        TestingSessionLocal,
        temp_files,
        worker_pool=ConversionWorkerPool(max_workers=2),
    )
    yield manager
    manager.shutdown(wait=True)


@pytest.fixture
def idle_manager(temp_files):
    """Manager whose jobs are queued but never run"""
    pool = MagicMock(spec=ConversionWorkerPool)
    pool.cancel.return_value = True
    return ConversionJobManager(TestingSessionLocal, temp_files, worker_pool=pool)


@contextmanager
def session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def submit(manager, file_id, mappings=CSV_MAPPINGS, request_id=None, user_id=OWNER) -> str:
    """Start a conversion and return its job id"""
    request = StartConversionRequest(file_id=file_id, request_id=request_id, field_mappings=mappings)
    with session() as db:
        return manager.start_conversion(db, request, user_id).job_id


def run(manager, file_id, **kwargs) -> str:
    """Start a conversion and wait for the worker to finish"""
    job_id = submit(manager, file_id, **kwargs)
    assert manager.wait_for(job_id, timeout=10)
    return job_id


def load_job(job_id) -> ConversionJob:
    with session() as db:
        return db.query(ConversionJob).filter(ConversionJob.job_id == job_id).first()


def load_request(request_id) -> DataRequest:
    with session() as db:
        return db.query(DataRequest).filter(DataRequest.request_id == request_id).first()


def add_request(request_id, status, requesting_user_id="researcher-1"):
    with session() as db:
        db.add(DataRequest(request_id=request_id, requesting_user_id=requesting_user_id, status=status))
        db.commit()


def job_count() -> int:
    with session() as db:
        return db.query(ConversionJob).count()


def failing_commit_sessions():
    """Session factory whose commits fail as if the database were locked"""
    def factory():
        db = TestingSessionLocal()
        db.commit = MagicMock(side_effect=OperationalError("UPDATE conversion_jobs", {}, Exception("database is locked")))
        return db
    return factory


# ============================================================================
# Mapping Validation Tests
# ============================================================================

class TestValidateFieldMappings:
    """Tests for validate_field_mappings"""

    def test_valid_csv_mappings(self):
        validate_field_mappings(CSV_MAPPINGS, InputFormat.CSV)

    def test_missing_required_csv_mapping(self):
        mappings = [m for m in CSV_MAPPINGS if m.canonical_path != "patient.name.family"]

        with pytest.raises(ValidationError, match="patient.name.family"):
            validate_field_mappings(mappings, InputFormat.CSV)

    def test_duplicate_target(self):
        mappings = CSV_MAPPINGS + [FieldMapping(source_column="mrn", canonical_path="patient.identifier")]

        with pytest.raises(ValidationError, match="Duplicate mapping"):
            validate_field_mappings(mappings, InputFormat.CSV)

    def test_json_and_ccda_need_no_mappings(self):
        validate_field_mappings([], InputFormat.JSON)
        validate_field_mappings([], InputFormat.CCDA)


# ============================================================================
# Submission Tests
# ============================================================================

class TestStartConversion:
    """Tests for start_conversion validation"""

    def test_returns_processing_job(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        with session() as db:
            job = idle_manager.start_conversion(
                db, StartConversionRequest(file_id=file_id, field_mappings=CSV_MAPPINGS), OWNER
            )
            assert job.status == ConversionStatus.PROCESSING
            assert job.input_format == InputFormat.CSV
            assert job.original_file_name == f"{file_id}_labs.csv"
            assert job.file_size_bytes == len(SAMPLE_CSV)
            assert job.user_id == OWNER

        idle_manager.worker_pool.submit.assert_called_once()
        assert idle_manager.field_mappings.get(job.job_id) == CSV_MAPPINGS

    def test_missing_file(self, manager):
        with pytest.raises(FileExpiredError, match="File has expired"):
            submit(manager, "no-such-file")
        assert job_count() == 0

    def test_file_removed_after_existence_check(self, manager, temp_files, monkeypatch):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        monkeypatch.setattr(temp_files, "info", lambda staged_id: ("", 0))

        with pytest.raises(FileExpiredError):
            submit(manager, file_id)
        assert job_count() == 0

    def test_unsupported_extension(self, manager, temp_files):
        file_id = temp_files.save(b"free text", "notes.txt")

        with pytest.raises(ValidationError, match="Unsupported file type"):
            submit(manager, file_id)
        assert job_count() == 0

    def test_oversize_file(self, temp_files):
        small_manager = ConversionJobManager(
            TestingSessionLocal, temp_files,
            worker_pool=MagicMock(spec=ConversionWorkerPool),
            max_file_size_bytes=10,
        )
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        with pytest.raises(ValidationError, match="exceeds"):
            submit(small_manager, file_id)

    def test_invalid_mappings_create_no_job(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        with pytest.raises(ValidationError):
            submit(manager, file_id, mappings=CSV_MAPPINGS[:1])
        assert job_count() == 0

    def test_in_progress_guard(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        submit(idle_manager, file_id)

        with pytest.raises(ConversionInProgressError, match="already in progress"):
            submit(idle_manager, file_id)
        assert job_count() == 1

    def test_in_progress_guard_is_per_user(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        submit(idle_manager, file_id)

        submit(idle_manager, file_id, user_id=OTHER_USER)

        assert job_count() == 2

    def test_finished_job_does_not_block_resubmission(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        run(manager, file_id)

        second = run(manager, file_id)

        assert load_job(second).status == ConversionStatus.COMPLETED

    def test_linked_request_is_used_once(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        idle_manager.link_file_to_request(file_id, "req-linked")

        job_id = submit(idle_manager, file_id)

        assert load_job(job_id).request_id == "req-linked"
        assert file_id not in idle_manager.file_requests


# ============================================================================
# Background Processing Tests
# ============================================================================

class TestProcessing:
    """Tests for worker outcomes"""

    def test_csv_conversion_completes(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        job = load_job(run(manager, file_id))

        assert job.status == ConversionStatus.COMPLETED
        assert job.patients_count == 1
        assert job.observations_count == 2
        assert job.completed_at is not None
        assert job.processing_time_ms is not None
        assert job.error_message is None
        assert job.updated_by == "System"

    def test_ccda_conversion_completes(self, manager, temp_files):
        file_id = temp_files.save(EMPTY_CCDA, "summary.xml")

        job = load_job(run(manager, file_id, mappings=[]))

        assert job.status == ConversionStatus.COMPLETED
        assert job.input_format == InputFormat.CCDA
        assert job.observations_count == 1

    def test_unparsable_file_fails(self, manager, temp_files):
        file_id = temp_files.save(b"{not json", "patient.json")

        job_id = run(manager, file_id, mappings=[])
        job = load_job(job_id)

        assert job.status == ConversionStatus.FAILED
        assert "JSON parsing failed" in job.error_message
        assert job_id not in manager.field_mappings

    def test_reset_job_discards_late_result(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)
        with session() as db:
            idle_manager.reset_job(db, job_id, OWNER)

        idle_manager._process(job_id, file_id, "labs.csv", InputFormat.CSV, CSV_MAPPINGS, threading.Event())

        job = load_job(job_id)
        assert job.status == ConversionStatus.FAILED
        assert job.error_message == RESET_REASON

    def test_cancelled_worker_writes_nothing(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)
        cancelled = threading.Event()
        cancelled.set()

        idle_manager._process(job_id, file_id, "labs.csv", InputFormat.CSV, CSV_MAPPINGS, cancelled)

        assert load_job(job_id).status == ConversionStatus.PROCESSING

    def test_stale_worker_write_is_discarded(self, idle_manager, temp_files, monkeypatch):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)
        completed = []
        idle_manager.event_bus.subscribe(ConversionCompleted, completed.append)
        original_find = ConversionJobRepository.find

        def find_then_reset(repo, wanted_job_id):
            job = original_find(repo, wanted_job_id)
            # Owner resets between the worker's read and its write
            with session() as other:
                current = other.query(ConversionJob).filter(ConversionJob.job_id == wanted_job_id).first()
                current.status = ConversionStatus.FAILED
                current.error_message = "Wrong file uploaded"
                other.commit()
            return job

        monkeypatch.setattr(ConversionJobRepository, "find", find_then_reset)

        idle_manager._process(job_id, file_id, "labs.csv", InputFormat.CSV, CSV_MAPPINGS, threading.Event())

        job = load_job(job_id)
        assert job.status == ConversionStatus.FAILED
        assert job.error_message == "Wrong file uploaded"
        assert completed == []

    def test_stale_failure_write_is_discarded(self, idle_manager, temp_files, monkeypatch):
        file_id = temp_files.save(b"{not json", "patient.json")
        job_id = submit(idle_manager, file_id, mappings=[])
        original_find = ConversionJobRepository.find

        def find_then_reset(repo, wanted_job_id):
            job = original_find(repo, wanted_job_id)
            with session() as other:
                current = other.query(ConversionJob).filter(ConversionJob.job_id == wanted_job_id).first()
                current.status = ConversionStatus.FAILED
                current.error_message = RESET_REASON
                other.commit()
            return job

        monkeypatch.setattr(ConversionJobRepository, "find", find_then_reset)

        idle_manager._process(job_id, file_id, "patient.json", InputFormat.JSON, [], threading.Event())

        assert load_job(job_id).error_message == RESET_REASON

    def test_failed_completion_write_leaves_job_processing(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        completed = []
        manager.event_bus.subscribe(ConversionCompleted, completed.append)
        manager.session_factory = failing_commit_sessions()

        job_id = run(manager, file_id)

        assert load_job(job_id).status == ConversionStatus.PROCESSING
        assert completed == []

        manager.session_factory = TestingSessionLocal
        second = run(manager, temp_files.save(SAMPLE_CSV, "labs.csv"))
        assert load_job(second).status == ConversionStatus.COMPLETED

    def test_failed_failure_write_leaves_job_processing(self, idle_manager, temp_files):
        file_id = temp_files.save(b"{not json", "patient.json")
        job_id = submit(idle_manager, file_id, mappings=[])
        idle_manager.session_factory = failing_commit_sessions()

        idle_manager._process(job_id, file_id, "patient.json", InputFormat.JSON, [], threading.Event())

        assert load_job(job_id).status == ConversionStatus.PROCESSING
        assert job_id not in idle_manager.field_mappings


# ============================================================================
# Reset Tests
# ============================================================================

class TestResetJob:
    """Tests for reset_job"""

    def test_owner_can_reset(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)

        with session() as db:
            idle_manager.reset_job(db, job_id, OWNER)

        job = load_job(job_id)
        assert job.status == ConversionStatus.FAILED
        assert job.error_message == RESET_REASON
        assert job.updated_by == OWNER
        idle_manager.worker_pool.cancel.assert_called_once_with(job_id)
        assert job_id not in idle_manager.field_mappings

    def test_reset_with_reason(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)

        with session() as db:
            idle_manager.reset_job(db, job_id, OWNER, reason="Wrong file uploaded")

        assert load_job(job_id).error_message == "Wrong file uploaded"

    def test_non_owner_rejected(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)

        with session() as db, pytest.raises(JobAccessError):
            idle_manager.reset_job(db, job_id, OTHER_USER)

        assert load_job(job_id).status == ConversionStatus.PROCESSING

    def test_completed_job_can_be_reset(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)

        with session() as db:
            manager.reset_job(db, job_id, OWNER)

        assert load_job(job_id).status == ConversionStatus.FAILED

    def test_unknown_job(self, manager):
        with session() as db, pytest.raises(JobNotFoundError):
            manager.reset_job(db, "missing", OWNER)

    def test_reset_unblocks_resubmission(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)
        with session() as db:
            idle_manager.reset_job(db, job_id, OWNER)

        submit(idle_manager, file_id)

        assert job_count() == 2

    def test_reset_wins_over_concurrent_completion(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)

        def worker_completes(cancelled_job_id):
            # The worker passed its cancel check and commits first
            with session() as other:
                job = other.query(ConversionJob).filter(ConversionJob.job_id == cancelled_job_id).first()
                job.status = ConversionStatus.COMPLETED
                job.updated_by = "System"
                other.commit()
            return True

        idle_manager.worker_pool.cancel.side_effect = worker_completes

        with session() as db:
            returned = idle_manager.reset_job(db, job_id, OWNER, reason="Wrong file uploaded")
            assert returned.status == ConversionStatus.FAILED

        job = load_job(job_id)
        assert job.status == ConversionStatus.FAILED
        assert job.error_message == "Wrong file uploaded"
        assert job.updated_by == OWNER


# ============================================================================
# Bundle Output Tests
# ============================================================================

class TestBundleOutput:
    """Tests for preview and download"""

    def test_preview(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)

        with session() as db:
            preview = manager.preview(db, job_id)

        assert preview.bundle_id == f"bundle-{job_id}"
        assert preview.patient_count == 1
        assert preview.observation_count == 2
        assert preview.sample_full_urls[0] == "Patient/patient-P001"
        assert len(preview.sample_full_urls) == 3

    def test_download(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)

        with session() as db:
            bundle = json.loads(manager.download_bundle(db, job_id))

        assert bundle["resourceType"] == "Bundle"
        assert bundle["id"] == f"bundle-{job_id}"
        assert len(bundle["entry"]) == 3
        assert job_id not in manager.field_mappings

    def test_download_after_eviction_redetects_mappings(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)
        manager.field_mappings.evict(job_id)

        with session() as db:
            bundle = json.loads(manager.download_bundle(db, job_id))

        assert len(bundle["entry"]) == 3
        codes = [entry["resource"]["code"]["coding"][0]["code"] for entry in bundle["entry"][1:]]
        assert codes == ["718-7", "2345-7"]

    def test_download_twice(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)

        with session() as db:
            first = json.loads(manager.download_bundle(db, job_id))
        with session() as db:
            second = json.loads(manager.download_bundle(db, job_id))

        assert len(first["entry"]) == len(second["entry"])

    def test_not_completed(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id)

        with session() as db, pytest.raises(ConversionNotCompletedError):
            idle_manager.download_bundle(db, job_id)

    def test_failed_job_not_downloadable(self, manager, temp_files):
        file_id = temp_files.save(b"{not json", "patient.json")
        job_id = run(manager, file_id, mappings=[])

        with session() as db, pytest.raises(ConversionNotCompletedError):
            manager.preview(db, job_id)

    def test_unknown_job(self, manager):
        with session() as db, pytest.raises(JobNotFoundError):
            manager.download_bundle(db, "missing")

    def test_expired_file(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = run(manager, file_id)
        temp_files.path(file_id, "labs.csv").unlink()

        with session() as db, pytest.raises(FileExpiredError):
            manager.download_bundle(db, job_id)


# ============================================================================
# Data Request Advancement Tests
# ============================================================================

class TestDataRequestAdvancement:
    """Tests for conversion-driven data request transitions"""

    def test_completion_then_download(self, manager, temp_files):
        add_request("req-1", DataRequestStatus.APPROVED)
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        job_id = run(manager, file_id, request_id="req-1")
        assert load_request("req-1").status == DataRequestStatus.DATA_READY

        with session() as db:
            manager.download_bundle(db, job_id)
        request = load_request("req-1")
        assert request.status == DataRequestStatus.COMPLETED
        assert request.updated_by == "System"

    def test_other_states_untouched(self, manager, temp_files):
        add_request("req-2", DataRequestStatus.PENDING)
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        job_id = run(manager, file_id, request_id="req-2")
        with session() as db:
            manager.download_bundle(db, job_id)

        assert load_request("req-2").status == DataRequestStatus.PENDING

    def test_failed_conversion_does_not_advance(self, manager, temp_files):
        add_request("req-3", DataRequestStatus.APPROVED)
        file_id = temp_files.save(b"{not json", "patient.json")

        run(manager, file_id, mappings=[], request_id="req-3")

        assert load_request("req-3").status == DataRequestStatus.APPROVED

    def test_advancer_ignores_unlinked_events(self):
        advancer = DataRequestStatusAdvancer(TestingSessionLocal)

        assert advancer.handle(ConversionCompleted("job-1", None, 1, 0)) is False
        assert advancer.handle(BundleDownloaded("job-1", "unknown-request", 10)) is False


# ============================================================================
# Query Tests
# ============================================================================

class TestQueries:
    """Tests for status, request lookup and history"""

    def test_get_by_request(self, idle_manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")
        job_id = submit(idle_manager, file_id, request_id="req-9")

        with session() as db:
            assert idle_manager.get_by_request(db, "req-9").job_id == job_id
            with pytest.raises(JobNotFoundError):
                idle_manager.get_by_request(db, "req-none")

    def test_history_includes_requested_jobs(self, idle_manager, temp_files):
        add_request("req-h", DataRequestStatus.APPROVED, requesting_user_id=OWNER)
        own_job = submit(idle_manager, temp_files.save(SAMPLE_CSV, "a.csv"))
        shared_job = submit(idle_manager, temp_files.save(SAMPLE_CSV, "b.csv"), user_id=OTHER_USER, request_id="req-h")
        submit(idle_manager, temp_files.save(SAMPLE_CSV, "c.csv"), user_id=OTHER_USER)

        with session() as db:
            history = {job.job_id for job in idle_manager.get_history(db, OWNER)}
            other_history = idle_manager.get_history(db, OTHER_USER)

        assert history == {own_job, shared_job}
        assert len(other_history) == 2

    def test_history_empty(self, manager):
        with session() as db:
            assert manager.get_history(db, "nobody") == []

    def test_detect_fields(self, manager, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        response = manager.detect_fields(file_id)

        assert response.file_id == file_id
        assert len(response.detected_fields) == 9
        assert "observation.code" in response.required_mappings
        assert response.available_fhir_fields == manager.available_fields()

    def test_detect_fields_missing_file(self, manager):
        with pytest.raises(FileExpiredError):
            manager.detect_fields("missing")


# ============================================================================
# Infrastructure Tests
# ============================================================================

class TestTempFileManager:
    """Tests for TempFileManager"""

    def test_save_and_info(self, temp_files):
        file_id = temp_files.save(SAMPLE_CSV, "labs.csv")

        assert temp_files.exists(file_id)
        assert temp_files.info(file_id) == ("labs.csv", len(SAMPLE_CSV))

    def test_missing_file(self, temp_files):
        assert not temp_files.exists("missing")
        assert temp_files.info("missing") == ("", 0)

    def test_pattern_characters_in_file_id(self, temp_files):
        (temp_files.temp_dir / "a[1]_labs.csv").write_bytes(SAMPLE_CSV)

        assert temp_files.exists("a[1]")
        assert temp_files.info("a[1]") == ("labs.csv", len(SAMPLE_CSV))
        assert not temp_files.exists("a*")
        assert not temp_files.exists("a[1")


class TestJobScopedStore:
    """Tests for JobScopedStore"""

    def test_put_get_evict(self):
        store = JobScopedStore()
        store.put("job-1", ["a"])

        assert "job-1" in store
        assert len(store) == 1
        assert store.get("job-1") == ["a"]
        assert store.evict("job-1") == ["a"]
        assert store.evict("job-1") is None
        assert store.get("job-1", []) == []


class TestEventBus:
    """Tests for EventBus"""

    def test_handler_failure_does_not_stop_delivery(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe(ConversionCompleted, broken)
        bus.subscribe(ConversionCompleted, received.append)
        event = ConversionCompleted("job-1", None, 1, 2)

        bus.publish(event)

        assert received == [event]

    def test_events_routed_by_type(self):
        bus = EventBus()
        received = []
        bus.subscribe(BundleDownloaded, received.append)

        bus.publish(ConversionCompleted("job-1", None, 1, 2))

        assert received == []


class TestConversionWorkerPool:
    """Tests for ConversionWorkerPool"""

    def test_cancel_signals_running_job(self):
        pool = ConversionWorkerPool(max_workers=1)
        started = threading.Event()
        outcome = []

        def work(cancel_event):
            started.set()
            outcome.append(cancel_event.wait(5))

        pool.submit("job-1", work)
        assert started.wait(5)
        assert pool.is_running("job-1")

        assert pool.cancel("job-1") is True
        assert pool.wait("job-1", timeout=5)
        assert outcome == [True]
        assert not pool.is_running("job-1")
        pool.shutdown()

    def test_cancel_queued_job(self):
        pool = ConversionWorkerPool(max_workers=1)
        release = threading.Event()
        ran = []

        pool.submit("job-1", lambda cancel_event: release.wait(5))
        pool.submit("job-2", lambda cancel_event: ran.append("job-2"))

        assert pool.cancel("job-2") is True
        release.set()
        assert pool.wait("job-1", timeout=5)
        pool.shutdown()
        assert ran == []

    def test_unknown_job(self):
        pool = ConversionWorkerPool(max_workers=1)

        assert pool.cancel("missing") is False
        assert pool.wait("missing") is True
        assert not pool.is_running("missing")
        pool.shutdown()

    def test_crash_is_contained(self):
        pool = ConversionWorkerPool(max_workers=1)

        def crash(cancel_event):
            raise RuntimeError("worker crashed")

        pool.submit("job-1", crash)

        assert pool.wait("job-1", timeout=5)
        pool.shutdown()

    def test_join_waits_for_cancelled_job(self):
        pool = ConversionWorkerPool(max_workers=1)
        started = threading.Event()
        finished = []

        def work(cancel_event):
            started.set()
            finished.append(cancel_event.wait(5))

        pool.submit("job-1", work)
        assert started.wait(5)

        pool.shutdown(wait=False)
        pool.join()

        assert finished == [True]


class TestManagerShutdown:
    """Tests for ConversionJobManager.shutdown"""

    @pytest.mark.parametrize("wait", [True, False])
    def test_resolver_closed_after_workers_exit(self, temp_files, wait):
        pool = MagicMock(spec=ConversionWorkerPool)
        converter = MagicMock(spec=FHIRConverter)
        converter.resolver = MagicMock()
        calls = MagicMock()
        calls.attach_mock(pool, "pool")
        calls.attach_mock(converter.resolver, "resolver")
        manager = ConversionJobManager(TestingSessionLocal, temp_files, converter=converter, worker_pool=pool)

        manager.shutdown(wait=wait)

        assert calls.mock_calls == [
            call.pool.shutdown(wait=wait),
            call.pool.join(),
            call.resolver.close(),
        ]
