"""Ingestion error taxonomy: input validation (rejected before any write) vs. system errors (retryable)."""


class IngestError(Exception):
    """Base class for batch-level ingestion failures."""

    retryable = False

    def __init__(self, message: str, filename: str | None = None) -> None:
        self.message = message
        self.filename = filename
        super().__init__(message)


class InputValidationError(IngestError):
    """Bad input; the batch is rejected before anything is written."""


class UnsupportedFormatError(InputValidationError):
    """File extension is not one of the supported export formats."""


class MalformedReportError(InputValidationError):
    """File could not be decoded or does not have the expected structure."""


class ReportDateError(InputValidationError):
    """No valid report-run date could be derived, or it is in the future or too old."""


class DuplicateReportError(InputValidationError):
    """Same filename or same (account, report date) submitted twice, or already ingested."""


class ChronologyError(InputValidationError):
    """Report is older than the latest report already ingested for its account."""


class MixedAccountError(InputValidationError):
    """One file holds findings for more than one account, or contradicts the requested account."""


class BatchCancelledError(InputValidationError):
    """Caller cancelled the batch before it entered the critical section."""


class SystemIngestError(IngestError):
    """Infrastructure failure; no partial state is visible and the caller may retry."""

    retryable = True


class LockTimeoutError(SystemIngestError):
    """Could not obtain the per-account ingestion lock in time."""


class StorageError(SystemIngestError):
    """The database rejected or failed a write; the batch was rolled back."""
