"""Derive and validate the report-run date of an export, and order multi-file batches by it."""

import re
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from pathlib import PurePath
from typing import Literal, Protocol, TypeVar

from pydantic import BaseModel

from vulntrail.services.errors import DuplicateReportError, ReportDateError

DateSource = Literal["filename", "metadata", "findings"]

# MM-DD-YYYY, one- or two-digit month and day.
_FILENAME_DATE = re.compile(r"^(\d{1,2})-(\d{1,2})-(\d{4})$")


class ResolvedReportDate(BaseModel):
    report_date: date
    source: DateSource


def today_utc() -> date:
    return datetime.now(timezone.utc).date()


def parse_report_filename(filename: str) -> date:
    """
    Read the report date from a filename such as ``05-01-2024.json``.

    Raises ReportDateError when the stem does not match MM-DD-YYYY or is not a real date.
    """
    if not filename or not filename.strip():
        raise ReportDateError("Filename is required to derive the report date.")
    stem = PurePath(filename.strip()).stem
    match = _FILENAME_DATE.match(stem)
    if not match:
        raise ReportDateError(
            f'Unable to derive report date from filename "{filename}". Expected format MM-DD-YYYY.ext',
            filename=filename,
        )
    month, day, year = (int(g) for g in match.groups())
    try:
        return date(year, month, day)
    except ValueError as e:
        raise ReportDateError(
            f'Filename "{filename}" contains an invalid calendar date.',
            filename=filename,
        ) from e


def retention_cutoff(today: date, max_age_years: int) -> date:
    """Same calendar day max_age_years ago (Feb 29 falls back to Feb 28)."""
    try:
        return today.replace(year=today.year - max_age_years)
    except ValueError:
        return today.replace(year=today.year - max_age_years, day=28)


def validate_report_date(
    report_date: date,
    today: date,
    max_age_years: int,
    filename: str | None = None,
) -> date:
    """Reject dates in the future or older than the retention horizon."""
    label = f"{filename}: " if filename else ""
    if report_date > today:
        raise ReportDateError(
            f"{label}report run date {report_date.isoformat()} cannot be in the future.",
            filename=filename,
        )
    if report_date < retention_cutoff(today, max_age_years):
        raise ReportDateError(
            f"{label}report run date {report_date.isoformat()} cannot be more than {max_age_years} years old.",
            filename=filename,
        )
    return report_date


def resolve_report_date(
    filename: str,
    embedded: date | None,
    today: date,
    max_age_years: int,
    latest_observed: datetime | None = None,
) -> ResolvedReportDate:
    """
    Resolve the report-run date: filename first, then a date embedded in the export,
    then the latest last-observed timestamp among its findings.
    """
    try:
        resolved = ResolvedReportDate(report_date=parse_report_filename(filename), source="filename")
    except ReportDateError as filename_error:
        if embedded is not None:
            resolved = ResolvedReportDate(report_date=embedded, source="metadata")
        elif latest_observed is not None:
            resolved = ResolvedReportDate(report_date=latest_observed.date(), source="findings")
        else:
            raise ReportDateError(
                f"{filename_error.message} No report date is embedded in the file either.",
                filename=filename,
            ) from filename_error
    validate_report_date(resolved.report_date, today, max_age_years, filename=filename)
    return resolved


class _BatchItem(Protocol):
    filename: str
    report_date: date
    account_id: str


T = TypeVar("T", bound=_BatchItem)


def order_batch(items: Iterable[T]) -> list[T]:
    """
    Sort batch members ascending by report date (filename breaks ties for different
    accounts). Duplicate filenames, or two files for the same account and date, are rejected.
    """
    ordered: Sequence[T] = sorted(items, key=lambda item: (item.report_date, item.filename))
    seen_names: dict[str, str] = {}
    seen_runs: dict[tuple[str, date], str] = {}
    for item in ordered:
        name_key = PurePath(item.filename).name.lower()
        if name_key in seen_names:
            raise DuplicateReportError(
                f"Duplicate file in batch: {item.filename} was submitted more than once.",
                filename=item.filename,
            )
        seen_names[name_key] = item.filename
        run_key = (item.account_id, item.report_date)
        if run_key in seen_runs:
            raise DuplicateReportError(
                f"Duplicate report date {item.report_date.isoformat()} for account {item.account_id}: "
                f"{seen_runs[run_key]} and {item.filename}.",
                filename=item.filename,
            )
        seen_runs[run_key] = item.filename
    return list(ordered)
