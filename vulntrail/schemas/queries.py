"""Pydantic schemas for read-side queries: filters, live findings, reports."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FindingFilters(BaseModel):
    """Filters for the live finding listing. All optional; combined with AND."""

    account_id: str | None = None
    severity: str | None = None
    status: str | None = None
    fix_available: str | None = None
    resource_type: str | None = None
    platform: str | None = Field(default=None, description="Case-insensitive substring match.")
    resource_id: str | None = Field(default=None, description="Case-insensitive substring match.")
    vulnerability_id: str | None = Field(default=None, description="Case-insensitive substring match.")
    search: str | None = Field(
        default=None,
        description="Free text matched against title, description and vulnerability id.",
    )
    first_observed_from: date | None = None
    first_observed_to: date | None = None
    last_observed_from: date | None = None
    last_observed_to: date | None = None

    @field_validator("severity", "status", "fix_available")
    @classmethod
    def upper_enum(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip().upper()

    @field_validator("account_id", "resource_type", "platform", "resource_id", "vulnerability_id", "search")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class FixedFilters(FindingFilters):
    """Filters for the fixed listing: the live filters plus a fixed-date range."""

    fixed_from: date | None = None
    fixed_to: date | None = None
    include_reopened: bool = Field(
        default=False,
        description="Include findings that were fixed and later reappeared in the live snapshot.",
    )


class ResourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: str | None = None
    resource_arn: str | None = None
    resource_type: str | None = None
    platform: str | None = None
    region: str | None = None
    details: dict | None = None
    tags: dict | None = None


class PackageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    version: str | None = None
    fixed_in_version: str | None = None
    ecosystem: str | None = None
    file_path: str | None = None


class FindingOut(BaseModel):
    """Live finding with its children."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    report_id: int
    account_id: str
    match_key: str
    finding_arn: str | None = None
    vulnerability_id: str | None = None
    title: str
    description: str = ""
    severity: str
    status: str
    fix_available: str
    exploit_available: str | None = None
    inspector_score: float | None = None
    epss_score: float | None = None
    first_observed_at: datetime
    last_observed_at: datetime
    updated_at: datetime | None = None
    resources: list[ResourceOut] = Field(default_factory=list)
    packages: list[PackageOut] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)

    @field_validator("references", mode="before")
    @classmethod
    def reference_urls(cls, v: object) -> object:
        # ORM rows carry Reference objects; API payloads carry plain URLs.
        if isinstance(v, list):
            return [getattr(item, "url", item) for item in v]
        return v


class FindingPage(BaseModel):
    items: list[FindingOut] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    has_more: bool


class DiffSummaryOut(BaseModel):
    """Diff outcome cached when the report was ingested."""

    model_config = ConfigDict(from_attributes=True)

    new_count: int
    active_count: int
    fixed_count: int
    fixed_by_severity: dict[str, int] = Field(default_factory=dict)
    fixed_by_fix_available: dict[str, int] = Field(default_factory=dict)
    total_days_active: int = 0
    avg_days_active: float = 0.0


class ReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    filename: str
    source_format: str
    report_run_date: date
    report_date_source: str
    uploaded_at: datetime
    account_id: str
    finding_count: int
    skipped_count: int
    status: str
    batch_id: str | None = None
    diff_summary: DiffSummaryOut | None = None


class ReportPage(BaseModel):
    items: list[ReportOut] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    has_more: bool
