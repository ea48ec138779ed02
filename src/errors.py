"""
Error taxonomy for the conversion pipeline.

- ValidationError: rejected synchronously, before any job exists
- ParseError: input defeats a parser; recorded on the job as Failed
- TerminologyLookupError: network tier failure; always recovered locally
- PersistenceError: a status write could not be committed
"""


class ConversionServiceError(Exception):
    """Base class for all service errors."""


class ValidationError(ConversionServiceError):
    """Request rejected before a job is created (mappings, extension, size)."""


class FileExpiredError(ConversionServiceError):
    """The staged upload no longer exists."""

    def __init__(self, message: str = "File has expired"):
        super().__init__(message)


class ConversionInProgressError(ConversionServiceError):
    """A job for the same user and file is still Processing."""

    def __init__(self, message: str = "Conversion is already in progress"):
        super().__init__(message)


class ParseError(ConversionServiceError):
    """Input file could not be parsed at all."""


class TerminologyLookupError(ConversionServiceError):
    """The terminology server response could not be reached or understood."""


class PersistenceError(ConversionServiceError):
    """A database write failed."""


class StaleJobError(PersistenceError):
    """The job row changed underneath the writer (optimistic version mismatch)."""


class JobNotFoundError(ConversionServiceError):
    def __init__(self, message: str = "Conversion job not found"):
        super().__init__(message)


class JobAccessError(ConversionServiceError):
    def __init__(self, message: str = "Not authorized to reset this job"):
        super().__init__(message)


class ConversionNotCompletedError(ConversionServiceError):
    def __init__(self, message: str = "Conversion not completed yet"):
        super().__init__(message)
