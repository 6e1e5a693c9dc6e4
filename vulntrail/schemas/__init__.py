"""Pydantic request/response schemas."""

from vulntrail.schemas.findings import (
    NormalizedFinding,
    NormalizedPackage,
    NormalizedResource,
    SeverityLevel,
    SkipDiagnostic,
)
from vulntrail.schemas.health import HealthResponse
from vulntrail.schemas.history import (
    FixedPage,
    FixedSummary,
    HistoryRecordOut,
    Timeline,
)
from vulntrail.schemas.queries import (
    FindingFilters,
    FindingOut,
    FindingPage,
    FixedFilters,
    ReportOut,
    ReportPage,
)
from vulntrail.schemas.upload import FileIngestResult, OperationStatus, UploadResponse

__all__ = [
    "FileIngestResult",
    "FindingFilters",
    "FindingOut",
    "FindingPage",
    "FixedFilters",
    "FixedPage",
    "FixedSummary",
    "HealthResponse",
    "HistoryRecordOut",
    "NormalizedFinding",
    "NormalizedPackage",
    "NormalizedResource",
    "OperationStatus",
    "ReportOut",
    "ReportPage",
    "SeverityLevel",
    "SkipDiagnostic",
    "Timeline",
    "UploadResponse",
]
