"""
Persistence boundary for conversion jobs and linked data requests.

All SQLAlchemy errors on writes surface as PersistenceError; an optimistic
version conflict surfaces as StaleJobError.
"""
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from src.canonical import ConversionStatus
from src.errors import PersistenceError, StaleJobError
from src.models import ConversionJob, DataRequest


class ConversionJobRepository:
    """Queries and writes for ConversionJob rows in a caller-owned session."""

    def __init__(self, db: Session):
        self.db = db

    def create(self, job: ConversionJob) -> ConversionJob:
        self.db.add(job)
        self.commit()
        self.db.refresh(job)
        return job

    def find(self, job_id: str) -> Optional[ConversionJob]:
        return self.db.query(ConversionJob).filter(ConversionJob.job_id == job_id).first()

    def find_by_request(self, request_id: str) -> Optional[ConversionJob]:
        """Most recent job linked to a data request."""
        return (
            self.db.query(ConversionJob)
            .filter(ConversionJob.request_id == request_id)
            .order_by(ConversionJob.created_at.desc())
            .first()
        )

    def find_for_user(self, user_id: str) -> List[ConversionJob]:
        """Own jobs plus jobs linked to requests the user made, newest first."""
        requested = (
            self.db.query(DataRequest.request_id)
            .filter(DataRequest.requesting_user_id == user_id)
        )
        return (
            self.db.query(ConversionJob)
            .filter(or_(
                ConversionJob.user_id == user_id,
                ConversionJob.request_id.in_(requested),
            ))
            .order_by(ConversionJob.created_at.desc())
            .all()
        )

    def find_processing_for_file(self, user_id: str, file_id: str) -> Optional[ConversionJob]:
        """Processing job of this user whose staged name carries the file id."""
        pattern = file_id.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return (
            self.db.query(ConversionJob)
            .filter(
                ConversionJob.user_id == user_id,
                ConversionJob.status == ConversionStatus.PROCESSING,
                ConversionJob.original_file_name.like(f"{pattern}\\_%", escape="\\"),
            )
            .first()
        )

    def commit(self) -> None:
        """Commit pending changes, translating database failures."""
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            raise StaleJobError(f"Conversion job was modified concurrently: {e}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(f"Failed to save conversion job: {e}") from e


class DataRequestRepository:
    def __init__(self, db: Session):
        self.db = db

    def find(self, request_id: str) -> Optional[DataRequest]:
        return self.db.query(DataRequest).filter(DataRequest.request_id == request_id).first()
