"""Request/response schemas for the upload endpoints."""

from datetime import date, datetime

from pydantic import BaseModel, Field

from vulntrail.schemas.findings import SkipDiagnostic
from vulntrail.schemas.history import FixedSummary


class FileIngestResult(BaseModel):
    """Outcome for one file of a committed batch."""

    filename: str
    report_id: int | None = Field(default=None, description="Database id of the created report.")
    format: str = Field(..., description="Detected export format (json or csv).")
    report_date: date
    report_date_source: str = "filename"
    account_id: str
    finding_count: int = Field(..., ge=0, description="Findings accepted into the live snapshot.")
    skipped: int = Field(default=0, ge=0, description="Records skipped with a diagnostic.")
    diagnostics: list[SkipDiagnostic] = Field(default_factory=list)
    new_count: int = Field(default=0, ge=0)
    active_count: int = Field(default=0, ge=0)
    fixed: FixedSummary | None = None


class UploadResponse(BaseModel):
    """Response after a batch is committed."""

    operation_id: str
    state: str
    files: list[FileIngestResult] = Field(default_factory=list)


class OperationStatus(BaseModel):
    """Best-effort progress of an ingestion operation."""

    operation_id: str
    state: str
    files_total: int = Field(..., ge=0)
    files_done: int = Field(..., ge=0)
    current_file: str | None = None
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None
