"""
Read-side queries over the live snapshot and the history trail.

All functions are side-effect free. Callers pass a session pinned to one snapshot
(get_read_db) so a count and the page that follows it agree.
"""

from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import case, func, or_, select
from sqlalchemy.orm import Session, selectinload

from vulntrail.core.config import get_settings
from vulntrail.models import (
    RESOLUTION_FIXED,
    Finding,
    HistoryFinding,
    HistoryResource,
    Report,
    Resource,
)
from vulntrail.schemas.findings import SEVERITY_VALUES
from vulntrail.schemas.history import FixedPage, FixedSummary, HistoryRecordOut, Timeline
from vulntrail.schemas.queries import (
    FindingFilters,
    FindingOut,
    FindingPage,
    FixedFilters,
    ReportOut,
    ReportPage,
)

NOT_FOUND = "NOT_FOUND"


def _page_bounds(page: int, page_size: int | None) -> tuple[int, int]:
    settings = get_settings()
    size = page_size or settings.DEFAULT_PAGE_SIZE
    return max(1, page), min(max(1, size), settings.MAX_PAGE_SIZE)


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _contains(column, value: str):
    """Case-insensitive substring match; LIKE wildcards in value are matched literally."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


def _severity_rank(column):
    return case(
        {severity: rank for rank, severity in enumerate(SEVERITY_VALUES)},
        value=column,
        else_=len(SEVERITY_VALUES),
    )


def _filter_conditions(model, resource_model, resource_link, filters: FindingFilters) -> list:
    """
    WHERE clauses shared by the live and history listings. model is Finding or
    HistoryFinding; resource filters go through an EXISTS on its resource table.
    """
    conditions = []
    if filters.account_id:
        conditions.append(model.account_id == filters.account_id)
    if filters.severity:
        conditions.append(model.severity == filters.severity)
    if filters.status:
        conditions.append(model.status == filters.status)
    if filters.fix_available:
        conditions.append(model.fix_available == filters.fix_available)
    if filters.vulnerability_id:
        conditions.append(_contains(model.vulnerability_id, filters.vulnerability_id))
    if filters.search:
        conditions.append(
            or_(
                _contains(model.title, filters.search),
                _contains(model.description, filters.search),
                _contains(model.vulnerability_id, filters.search),
            )
        )

    resource_conditions = []
    if filters.resource_type:
        resource_conditions.append(resource_model.resource_type == filters.resource_type)
    if filters.platform:
        resource_conditions.append(_contains(resource_model.platform, filters.platform))
    if filters.resource_id:
        resource_conditions.append(_contains(resource_model.resource_id, filters.resource_id))
    for condition in resource_conditions:
        conditions.append(select(resource_model.id).where(resource_link == model.id, condition).exists())

    if filters.first_observed_from:
        conditions.append(model.first_observed_at >= _day_start(filters.first_observed_from))
    if filters.first_observed_to:
        conditions.append(model.first_observed_at < _day_start(filters.first_observed_to + timedelta(days=1)))
    if filters.last_observed_from:
        conditions.append(model.last_observed_at >= _day_start(filters.last_observed_from))
    if filters.last_observed_to:
        conditions.append(model.last_observed_at < _day_start(filters.last_observed_to + timedelta(days=1)))
    return conditions


def _live_conditions(filters: FindingFilters) -> list:
    return _filter_conditions(Finding, Resource, Resource.finding_id, filters)


def _fixed_conditions(filters: FixedFilters) -> list:
    conditions = _filter_conditions(HistoryFinding, HistoryResource, HistoryResource.history_finding_id, filters)
    conditions.append(HistoryFinding.resolution == RESOLUTION_FIXED)
    if filters.fixed_from:
        conditions.append(HistoryFinding.fixed_date >= filters.fixed_from)
    if filters.fixed_to:
        conditions.append(HistoryFinding.fixed_date <= filters.fixed_to)
    if not filters.include_reopened:
        live_again = (
            select(Finding.id)
            .where(
                Finding.account_id == HistoryFinding.account_id,
                Finding.match_key == HistoryFinding.match_key,
            )
            .exists()
        )
        conditions.append(~live_again)
    return conditions


def list_findings(
    db: Session,
    filters: FindingFilters | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> FindingPage:
    """Live findings matching filters, most severe first, then most recently observed."""
    filters = filters or FindingFilters()
    page, page_size = _page_bounds(page, page_size)
    conditions = _live_conditions(filters)
    total = db.scalar(select(func.count()).select_from(Finding).where(*conditions)) or 0
    rows = db.scalars(
        select(Finding)
        .where(*conditions)
        .order_by(_severity_rank(Finding.severity), Finding.last_observed_at.desc(), Finding.id)
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return FindingPage(
        items=[FindingOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )


def _fixed_summary(db: Session, conditions: Sequence) -> FixedSummary:
    """Aggregates over the whole filtered fixed set, not just one page."""
    total, total_days = db.execute(
        select(func.count(HistoryFinding.id), func.coalesce(func.sum(HistoryFinding.days_active), 0)).where(
            *conditions
        )
    ).one()
    by_severity = {s: 0 for s in SEVERITY_VALUES}
    for severity, count in db.execute(
        select(HistoryFinding.severity, func.count(HistoryFinding.id))
        .where(*conditions)
        .group_by(HistoryFinding.severity)
    ):
        by_severity[severity] = count
    by_fix = {
        fix: count
        for fix, count in db.execute(
            select(HistoryFinding.fix_available, func.count(HistoryFinding.id))
            .where(*conditions)
            .group_by(HistoryFinding.fix_available)
        )
    }
    total = total or 0
    total_days = int(total_days or 0)
    return FixedSummary(
        total_fixed=total,
        by_severity=by_severity,
        by_fix_available=by_fix,
        total_days_active=total_days,
        avg_days_active=round(total_days / total, 1) if total else 0.0,
    )


def list_fixed(
    db: Session,
    filters: FixedFilters | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> FixedPage:
    """Fixed findings, most recently fixed first, with a summary over the filtered set."""
    filters = filters or FixedFilters()
    page, page_size = _page_bounds(page, page_size)
    conditions = _fixed_conditions(filters)
    summary = _fixed_summary(db, conditions)
    rows = db.scalars(
        select(HistoryFinding)
        .where(*conditions)
        .order_by(
            HistoryFinding.fixed_date.desc(),
            _severity_rank(HistoryFinding.severity),
            HistoryFinding.id.desc(),
        )
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return FixedPage(
        items=[HistoryRecordOut.model_validate(row) for row in rows],
        total=summary.total_fixed,
        page=page,
        page_size=page_size,
        has_more=page * page_size < summary.total_fixed,
        summary=summary,
    )


def get_timeline(
    db: Session,
    identifier: str,
    account_id: str | None = None,
    resource_id: str | None = None,
) -> Timeline:
    """
    Current state and archived history for a finding ARN, match key or vulnerability id.

    A vulnerability id can match several findings (one per resource); narrow it with
    account_id and resource_id. History is ordered newest archival first.
    """
    identifier = identifier.strip()

    def _conditions(model, resource_model, resource_link) -> list:
        conditions = [
            or_(
                model.finding_arn == identifier,
                model.match_key == identifier,
                model.vulnerability_id == identifier,
            )
        ]
        if account_id:
            conditions.append(model.account_id == account_id)
        if resource_id:
            conditions.append(
                select(resource_model.id)
                .where(resource_link == model.id, resource_model.resource_id == resource_id)
                .exists()
            )
        return conditions

    current = db.scalars(
        select(Finding)
        .where(*_conditions(Finding, Resource, Resource.finding_id))
        .order_by(_severity_rank(Finding.severity), Finding.id)
    ).all()
    history = db.scalars(
        select(HistoryFinding)
        .where(*_conditions(HistoryFinding, HistoryResource, HistoryResource.history_finding_id))
        .order_by(HistoryFinding.archived_at.desc(), HistoryFinding.id.desc())
    ).all()

    if current:
        status = current[0].status
    elif any(h.resolution == RESOLUTION_FIXED for h in history):
        status = RESOLUTION_FIXED
    else:
        status = NOT_FOUND
    return Timeline(
        identifier=identifier,
        current_status=status,
        current=[FindingOut.model_validate(row) for row in current],
        history=[HistoryRecordOut.model_validate(row) for row in history],
    )


def list_reports(
    db: Session,
    account_id: str | None = None,
    page: int = 1,
    page_size: int | None = None,
) -> ReportPage:
    """Committed reports, newest run date first, each with its cached diff summary."""
    page, page_size = _page_bounds(page, page_size)
    conditions = [Report.account_id == account_id] if account_id else []
    total = db.scalar(select(func.count()).select_from(Report).where(*conditions)) or 0
    rows = db.scalars(
        select(Report)
        .options(selectinload(Report.diff_summary))
        .where(*conditions)
        .order_by(Report.report_run_date.desc(), Report.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return ReportPage(
        items=[ReportOut.model_validate(row) for row in rows],
        total=total,
        page=page,
        page_size=page_size,
        has_more=page * page_size < total,
    )
