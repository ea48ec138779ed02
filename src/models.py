from sqlalchemy import Column, Integer, String, Text, DateTime, Enum
from datetime import datetime, timezone

from .canonical import ConversionStatus, DataRequestStatus, InputFormat
from .database import Base


def utcnow():
    """Get current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class ConversionJob(Base):
    """
    One attempt to convert a staged file into a FHIR bundle.

    Written by the background worker (terminal status) and by user resets.
    `version` is an optimistic lock: a stale writer gets StaleDataError
    instead of silently overwriting the other write.
    """
    __tablename__ = "conversion_jobs"

    job_id = Column(String(36), primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    request_id = Column(String(36), nullable=True, index=True)  # linked DataRequest, if any
    file_id = Column(String(36), nullable=False, index=True)
    input_format = Column(Enum(InputFormat, values_callable=_enum_values, name="input_format"), nullable=False)
    status = Column(
        Enum(ConversionStatus, values_callable=_enum_values, name="conversion_status"),
        nullable=False,
        default=ConversionStatus.PROCESSING,
    )
    error_message = Column(Text, nullable=True)
    patients_count = Column(Integer, default=0, nullable=False)
    observations_count = Column(Integer, default=0, nullable=False)
    original_file_name = Column(String(512), nullable=False)  # <fileId>_<name>
    file_size_bytes = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    updated_by = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class DataRequest(Base):
    """
    Data-sharing request owned by another subsystem.

    Only the conversion-driven transitions are applied here.
    """
    __tablename__ = "data_requests"

    request_id = Column(String(36), primary_key=True, index=True)
    requesting_user_id = Column(String(64), nullable=False, index=True)
    status = Column(
        Enum(DataRequestStatus, values_callable=_enum_values, name="data_request_status"),
        nullable=False,
        default=DataRequestStatus.PENDING,
    )
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)
    updated_by = Column(String(64), nullable=True)
