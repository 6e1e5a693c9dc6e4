"""Pydantic schemas for the history trail: fixed-finding listings, summaries and timelines."""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from vulntrail.schemas.queries import FindingOut


class FixedSummary(BaseModel):
    """Aggregates over a set of fixed findings."""

    total_fixed: int = Field(default=0, ge=0)
    by_severity: dict[str, int] = Field(
        default_factory=dict,
        description="Fixed count per severity (every severity present, zero when none).",
    )
    by_fix_available: dict[str, int] = Field(
        default_factory=dict,
        description="Fixed count per fix availability at the time the finding was fixed.",
    )
    total_days_active: int = Field(default=0, ge=0)
    avg_days_active: float = Field(default=0.0, ge=0, description="Rounded to one decimal.")


class HistoryResourceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    resource_id: str | None = None
    resource_arn: str | None = None
    resource_type: str | None = None
    platform: str | None = None
    region: str | None = None


class HistoryRecordOut(BaseModel):
    """One archived snapshot of a finding."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    report_id: int = Field(..., description="Report whose ingestion archived this snapshot.")
    source_report_id: int | None = Field(default=None, description="Report the finding belonged to when archived.")
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
    archived_at: datetime
    resolution: Literal["SUPERSEDED", "FIXED"]
    fixed_date: date | None = None
    days_active: int | None = None
    resources: list[HistoryResourceOut] = Field(default_factory=list)
    packages: list[dict] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


class FixedPage(BaseModel):
    """Page of fixed findings plus aggregates over the whole filtered set."""

    items: list[HistoryRecordOut] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    has_more: bool
    summary: FixedSummary


class Timeline(BaseModel):
    """Current state and full archived history of one finding (or every finding of one vulnerability)."""

    identifier: str
    current_status: str = Field(
        ...,
        description="Live status when the finding is in the current snapshot, FIXED when it was fixed, else NOT_FOUND.",
    )
    current: list[FindingOut] = Field(default_factory=list)
    history: list[HistoryRecordOut] = Field(
        default_factory=list,
        description="Archived snapshots, most recent first.",
    )
