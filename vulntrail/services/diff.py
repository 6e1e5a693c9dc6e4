"""
Historical diff between the previous live snapshot and a newly ingested one.

Findings are correlated by match key (finding ARN, or vulnerability id + resource id):

- keys only in the new snapshot are newly observed,
- keys in both are still active,
- keys only in the previous snapshot are fixed.

A fixed finding's effective fixed date is the later of the triggering report's run date
and the finding's own last-observed date, and days_active counts from first observation
to that date. A finding is never fixed before its last sighting.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import date, datetime

from pydantic import BaseModel, Field

from vulntrail.schemas.findings import SEVERITY_VALUES, ensure_utc
from vulntrail.schemas.history import FixedSummary

logger = logging.getLogger(__name__)


class FindingSnapshot(BaseModel):
    """The parts of a live finding the diff needs, captured before the snapshot is replaced."""

    match_key: str
    finding_arn: str | None = None
    vulnerability_id: str | None = None
    severity: str
    fix_available: str = "NO"
    first_observed_at: datetime
    last_observed_at: datetime


class FixedEntry(BaseModel):
    match_key: str
    severity: str
    fix_available: str
    first_observed_at: datetime
    last_observed_at: datetime
    fixed_date: date
    days_active: int = Field(..., ge=0)
    clamped: bool = False


class DiffResult(BaseModel):
    new_keys: list[str] = Field(default_factory=list)
    active_keys: list[str] = Field(default_factory=list)
    fixed: list[FixedEntry] = Field(default_factory=list)


def effective_fixed_date(report_date: date, last_observed_at: datetime) -> date:
    """Later of the report-run date and the finding's last sighting."""
    return max(report_date, ensure_utc(last_observed_at).date())


def compute_days_active(first_observed_at: datetime, fixed_date: date) -> tuple[int, bool]:
    """Whole days from first observation to the fixed date, floored at zero. Second value is True when clamped."""
    days = (fixed_date - ensure_utc(first_observed_at).date()).days
    if days < 0:
        return 0, True
    return days, False


def compute_diff(
    previous: Mapping[str, FindingSnapshot],
    current_keys: Iterable[str],
    report_date: date,
) -> DiffResult:
    """Classify findings as new, still active, or fixed; fixed entries carry fixed_date and days_active."""
    current = list(dict.fromkeys(current_keys))
    current_set = set(current)
    result = DiffResult(
        new_keys=[k for k in current if k not in previous],
        active_keys=[k for k in current if k in previous],
    )
    for key, snap in previous.items():
        if key in current_set:
            continue
        fixed_date = effective_fixed_date(report_date, snap.last_observed_at)
        days_active, clamped = compute_days_active(snap.first_observed_at, fixed_date)
        if clamped:
            logger.error(
                "Fixed finding has negative active duration; clamping to zero",
                extra={
                    "match_key": key,
                    "first_observed_at": snap.first_observed_at.isoformat(),
                    "fixed_date": fixed_date.isoformat(),
                },
            )
        result.fixed.append(
            FixedEntry(
                match_key=key,
                severity=snap.severity,
                fix_available=snap.fix_available,
                first_observed_at=snap.first_observed_at,
                last_observed_at=snap.last_observed_at,
                fixed_date=fixed_date,
                days_active=days_active,
                clamped=clamped,
            )
        )
    return result


def summarize_fixed(fixed: Iterable[FixedEntry]) -> FixedSummary:
    """Counts per severity and fix availability, plus total and average days active."""
    by_severity = {s: 0 for s in SEVERITY_VALUES}
    by_fix: dict[str, int] = {}
    total = 0
    total_days = 0
    for entry in fixed:
        total += 1
        by_severity[entry.severity] = by_severity.get(entry.severity, 0) + 1
        by_fix[entry.fix_available] = by_fix.get(entry.fix_available, 0) + 1
        total_days += entry.days_active
    return FixedSummary(
        total_fixed=total,
        by_severity=by_severity,
        by_fix_available=by_fix,
        total_days_active=total_days,
        avg_days_active=round(total_days / total, 1) if total else 0.0,
    )
