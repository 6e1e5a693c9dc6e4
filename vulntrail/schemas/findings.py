"""Pydantic schemas for findings: the canonical normalized shape and per-record skip diagnostics."""

import re
from datetime import date, datetime, time, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Canonical severities as the scanner reports them.
SeverityLevel = Literal["CRITICAL", "HIGH", "MEDIUM", "LOW", "INFORMATIONAL", "UNTRIAGED"]

SEVERITY_VALUES: tuple[str, ...] = ("CRITICAL", "HIGH", "MEDIUM", "LOW", "INFORMATIONAL", "UNTRIAGED")

FixAvailability = Literal["YES", "NO", "PARTIAL"]

# Widths of the matching string columns in vulntrail.models.
MAX_ACCOUNT_ID_LENGTH = 32
MAX_KEY_LENGTH = 2048
MAX_STATUS_LENGTH = 20
MAX_EXPLOIT_LENGTH = 10

# Console CSV exports use human-readable timestamps; ISO-8601 and epoch are left to pydantic.
_CONSOLE_TIMESTAMP_FORMATS = (
    "%b %d, %Y, %H:%M:%S",
    "%b %d, %Y %I:%M:%S %p",
    "%b %d, %Y %I:%M %p",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TZ_SUFFIX = re.compile(r"\s*\((UTC|GMT)\)$", re.IGNORECASE)


def parse_timestamp(value: Any) -> Any:
    """Pre-parse timestamp shapes pydantic does not accept natively; pass anything else through."""
    if not isinstance(value, str):
        return value
    text = _TZ_SUFFIX.sub("", value.strip())
    if not text:
        return None
    if _DATE_ONLY.match(text):
        return datetime.combine(date.fromisoformat(text), time.min, tzinfo=timezone.utc)
    for fmt in _CONSOLE_TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return text


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NormalizedResource(BaseModel):
    """Resource affected by a finding."""

    resource_id: str | None = Field(default=None, max_length=MAX_KEY_LENGTH)
    resource_arn: str | None = Field(default=None, max_length=MAX_KEY_LENGTH)
    resource_type: str | None = Field(default=None, max_length=64)
    platform: str | None = Field(default=None, max_length=255)
    region: str | None = Field(default=None, max_length=32)
    details: dict | None = None
    tags: dict | None = None


class NormalizedPackage(BaseModel):
    """Vulnerable package; name is the only required field."""

    name: str = Field(..., min_length=1, max_length=1024)
    version: str | None = Field(default=None, max_length=255)
    fixed_in_version: str | None = Field(default=None, max_length=255)
    ecosystem: str | None = Field(default=None, max_length=64)
    file_path: str | None = Field(default=None, max_length=MAX_KEY_LENGTH)


class NormalizedFinding(BaseModel):
    """Canonical finding, independent of the export format it came from."""

    match_key: str = Field(
        ...,
        min_length=1,
        max_length=MAX_KEY_LENGTH,
        description="Correlation key across uploads: finding ARN, or vulnerability id + resource id.",
    )
    finding_arn: str | None = Field(default=None, max_length=MAX_KEY_LENGTH, description="Scanner-assigned finding ARN.")
    account_id: str | None = Field(default=None, max_length=MAX_ACCOUNT_ID_LENGTH, description="Owning cloud account.")
    vulnerability_id: str | None = Field(default=None, max_length=255, description="CVE/GHSA or scanner vulnerability id.")
    title: str = Field(..., min_length=1)
    description: str = ""
    severity: SeverityLevel
    status: str = Field(..., min_length=1, max_length=MAX_STATUS_LENGTH)
    fix_available: FixAvailability = "NO"
    exploit_available: str | None = Field(default=None, max_length=MAX_EXPLOIT_LENGTH)
    inspector_score: float | None = Field(default=None, ge=0, le=10)
    epss_score: float | None = Field(default=None, ge=0, le=1)
    first_observed_at: datetime
    last_observed_at: datetime
    updated_at: datetime | None = None
    resources: list[NormalizedResource] = Field(default_factory=list)
    packages: list[NormalizedPackage] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)

    @field_validator("first_observed_at", "last_observed_at", "updated_at", mode="before")
    @classmethod
    def pre_parse_timestamps(cls, v: Any) -> Any:
        return parse_timestamp(v)

    @field_validator("first_observed_at", "last_observed_at", "updated_at")
    @classmethod
    def timestamps_to_utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None


class SkipDiagnostic(BaseModel):
    """A single finding that was skipped; the rest of the file is still ingested."""

    index: int = Field(..., ge=1, description="1-based position of the record in the file.")
    finding_key: str | None = Field(
        default=None,
        description="Finding ARN or other identifier when one could be read.",
    )
    reason: str = Field(..., description="Why the record was skipped.")
