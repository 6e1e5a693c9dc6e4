"""
Ingestion orchestrator: validate a batch of exports, then archive, replace and diff
each report inside one unit of work under per-account locks.

Per-batch state machine (see IngestState):

  IDLE -> VALIDATING -> (ARCHIVING -> REPLACING -> DIFFING) per file -> COMMITTED
  any state -> FAILED, with everything rolled back

Validation (parsing, normalization, report dates, batch ordering) runs concurrently
and before any lock is taken; nothing is written until every file has passed it.
"""

import logging
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vulntrail.core.locks import AccountLockManager
from vulntrail.models import (
    RESOLUTION_FIXED,
    RESOLUTION_SUPERSEDED,
    DiffSummary,
    Finding,
    HistoryFinding,
    HistoryResource,
    Package,
    Reference,
    Report,
    Resource,
)
from vulntrail.schemas.findings import NormalizedFinding, ensure_utc
from vulntrail.schemas.upload import FileIngestResult
from vulntrail.services.diff import FindingSnapshot, FixedEntry, compute_diff, summarize_fixed
from vulntrail.services.errors import (
    ChronologyError,
    DuplicateReportError,
    IngestError,
    MalformedReportError,
    StorageError,
)
from vulntrail.services.normalize import NormalizationResult, normalize_findings, resolve_account
from vulntrail.services.operations import IngestOperation, IngestState
from vulntrail.services.report_dates import order_batch, resolve_report_date, today_utc
from vulntrail.services.sources import parse_export

if TYPE_CHECKING:
    from vulntrail.core.config import Settings

logger = logging.getLogger(__name__)


class PreparedFile(BaseModel):
    """A file that passed validation and is ready for the critical section."""

    filename: str
    source_format: str
    report_date: date
    report_date_source: str
    account_id: str
    normalization: NormalizationResult


class BatchResult(BaseModel):
    batch_id: str
    operation_id: str
    state: str
    files: list[FileIngestResult] = Field(default_factory=list)


class UnitOfWork:
    """
    One session and one transaction for a whole batch.

    Leaving the block without calling commit() (or with an exception) rolls back.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory
        self.session: Session | None = None
        self._committed = False

    def __enter__(self) -> "UnitOfWork":
        self.session = self.session_factory()
        return self

    def commit(self) -> None:
        self.session.commit()
        self._committed = True

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if not self._committed:
                self.session.rollback()
        finally:
            self.session.close()


def _snapshot(row: Finding) -> FindingSnapshot:
    return FindingSnapshot(
        match_key=row.match_key,
        finding_arn=row.finding_arn,
        vulnerability_id=row.vulnerability_id,
        severity=row.severity,
        fix_available=row.fix_available,
        first_observed_at=ensure_utc(row.first_observed_at),
        last_observed_at=ensure_utc(row.last_observed_at),
    )


def _archive_snapshot(
    db: Session,
    report: Report,
    live: Sequence[Finding],
    archived_at: datetime,
) -> tuple[dict[str, FindingSnapshot], dict[str, HistoryFinding]]:
    """
    Copy every live finding of the account into history as SUPERSEDED, tagged with
    the report being ingested. Returns the pre-replacement snapshot and the new rows.
    """
    previous: dict[str, FindingSnapshot] = {}
    archived: dict[str, HistoryFinding] = {}
    for row in live:
        previous[row.match_key] = _snapshot(row)
        record = HistoryFinding(
            report_id=report.id,
            source_report_id=row.report_id,
            account_id=row.account_id,
            match_key=row.match_key,
            finding_arn=row.finding_arn,
            vulnerability_id=row.vulnerability_id,
            title=row.title,
            description=row.description or "",
            severity=row.severity,
            status=row.status,
            fix_available=row.fix_available,
            exploit_available=row.exploit_available,
            inspector_score=row.inspector_score,
            epss_score=row.epss_score,
            first_observed_at=row.first_observed_at,
            last_observed_at=row.last_observed_at,
            updated_at=row.updated_at,
            packages=[
                {
                    "name": p.name,
                    "version": p.version,
                    "fixed_in_version": p.fixed_in_version,
                    "ecosystem": p.ecosystem,
                    "file_path": p.file_path,
                }
                for p in row.packages
            ],
            references=[r.url for r in row.references],
            archived_at=archived_at,
            resolution=RESOLUTION_SUPERSEDED,
            resources=[
                HistoryResource(
                    resource_id=r.resource_id,
                    resource_arn=r.resource_arn,
                    resource_type=r.resource_type,
                    platform=r.platform,
                    region=r.region,
                )
                for r in row.resources
            ],
        )
        db.add(record)
        archived[row.match_key] = record
    db.flush()
    return previous, archived


def _fill_finding(row: Finding, finding: NormalizedFinding, report: Report) -> None:
    row.report_id = report.id
    row.finding_arn = finding.finding_arn
    row.vulnerability_id = finding.vulnerability_id
    row.title = finding.title
    row.description = finding.description
    row.severity = finding.severity
    row.status = finding.status
    row.fix_available = finding.fix_available
    row.exploit_available = finding.exploit_available
    row.inspector_score = finding.inspector_score
    row.epss_score = finding.epss_score
    row.updated_at = finding.updated_at
    row.resources = [
        Resource(
            resource_id=r.resource_id,
            resource_arn=r.resource_arn,
            resource_type=r.resource_type,
            platform=r.platform,
            region=r.region,
            details=r.details,
            tags=r.tags,
        )
        for r in finding.resources
    ]
    row.packages = [
        Package(
            name=p.name,
            version=p.version,
            fixed_in_version=p.fixed_in_version,
            ecosystem=p.ecosystem,
            file_path=p.file_path,
        )
        for p in finding.packages
    ]
    row.references = [Reference(url=url) for url in finding.references]


def _apply_replacement(
    db: Session,
    report: Report,
    live: Sequence[Finding],
    incoming: Sequence[NormalizedFinding],
) -> None:
    """
    Make the account's live snapshot equal to the report's findings.

    Persisting findings keep their stored first_observed_at and advance last_observed_at;
    new ones are inserted; findings absent from the report are deleted (already archived).
    """
    by_key = {row.match_key: row for row in live}
    seen: set[str] = set()
    for finding in incoming:
        seen.add(finding.match_key)
        row = by_key.get(finding.match_key)
        if row is None:
            row = Finding(
                account_id=report.account_id,
                match_key=finding.match_key,
                first_observed_at=finding.first_observed_at,
                last_observed_at=finding.last_observed_at,
            )
            db.add(row)
        else:
            row.last_observed_at = max(ensure_utc(row.last_observed_at), finding.last_observed_at)
        _fill_finding(row, finding, report)
    for key, row in by_key.items():
        if key not in seen:
            db.delete(row)
    db.flush()


def _mark_fixed(archived: dict[str, HistoryFinding], fixed: Sequence[FixedEntry]) -> None:
    for entry in fixed:
        record = archived[entry.match_key]
        record.resolution = RESOLUTION_FIXED
        record.fixed_date = entry.fixed_date
        record.days_active = entry.days_active


class IngestionOrchestrator:
    """Runs ingestion batches. One instance per process so its lock manager is shared."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: "Settings",
        lock_manager: AccountLockManager | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.lock_manager = lock_manager or AccountLockManager(settings.INGEST_LOCK_TIMEOUT_SEC)

    def run(
        self,
        files: Sequence[tuple[str, bytes]],
        account_id: str | None = None,
        operation: IngestOperation | None = None,
        today: date | None = None,
    ) -> BatchResult:
        """
        Ingest (filename, content) pairs as one atomic batch.

        Raises InputValidationError subclasses for bad input (nothing written) and
        SystemIngestError subclasses for lock or storage failures (rolled back, retryable).
        """
        operation = operation or IngestOperation(files_total=len(files))
        operation.files_total = len(files)
        today = today or today_utc()
        batch_id = str(uuid.uuid4())
        log_extra = {"batch_id": batch_id, "operation_id": operation.id, "file_count": len(files)}
        logger.info("Ingestion batch started", extra=log_extra)
        try:
            operation.transition(IngestState.VALIDATING)
            prepared = self._prepare(files, account_id, today)
            operation.raise_if_cancelled()
            results = self._apply(prepared, batch_id, operation)
        except IngestError as e:
            operation.fail(e.message)
            level = logging.WARNING if not e.retryable else logging.ERROR
            logger.log(
                level,
                "Ingestion batch failed: %s",
                e.message,
                extra={**log_extra, "retryable": e.retryable, "error_type": type(e).__name__},
            )
            raise
        except Exception as e:
            operation.fail(str(e))
            logger.exception("Ingestion batch failed unexpectedly", extra=log_extra)
            raise
        operation.transition(IngestState.COMMITTED)
        logger.info("Ingestion batch committed", extra=log_extra)
        return BatchResult(
            batch_id=batch_id,
            operation_id=operation.id,
            state=operation.state.value,
            files=results,
        )

    def _prepare_file(
        self,
        filename: str,
        content: bytes,
        account_id: str | None,
        today: date,
    ) -> PreparedFile:
        parsed = parse_export(
            filename,
            content,
            max_bytes=self.settings.MAX_UPLOAD_FILE_BYTES,
            max_records=self.settings.MAX_FINDINGS_PER_FILE,
        )
        normalization = normalize_findings(parsed.records, filename=filename)
        owner = resolve_account(normalization, account_id, filename)
        latest_observed = max((f.last_observed_at for f in normalization.findings), default=None)
        resolved = resolve_report_date(
            filename,
            parsed.embedded_report_date,
            today,
            self.settings.REPORT_MAX_AGE_YEARS,
            latest_observed=latest_observed,
        )
        logger.debug(
            "Validated report file",
            extra={
                "report_file": filename,
                "account_id": owner,
                "report_date": resolved.report_date.isoformat(),
                "accepted": normalization.accepted,
                "skipped": normalization.skipped,
            },
        )
        return PreparedFile(
            filename=filename,
            source_format=parsed.source_format,
            report_date=resolved.report_date,
            report_date_source=resolved.source,
            account_id=owner,
            normalization=normalization,
        )

    def _prepare(
        self,
        files: Sequence[tuple[str, bytes]],
        account_id: str | None,
        today: date,
    ) -> list[PreparedFile]:
        """Parse and normalize every file concurrently, then order the batch by report date."""
        if not files:
            raise MalformedReportError("No files were submitted.")
        workers = min(self.settings.INGEST_PARSE_WORKERS, len(files))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="vulntrail-parse") as pool:
            futures = [
                pool.submit(self._prepare_file, filename, content, account_id, today)
                for filename, content in files
            ]
            # First failure in submission order wins so the reported error is deterministic.
            prepared = [future.result() for future in futures]
        return order_batch(prepared)

    def _check_stored_chronology(self, db: Session, prepared: Sequence[PreparedFile]) -> None:
        """Each account's earliest file must be strictly later than its latest stored report."""
        earliest: dict[str, PreparedFile] = {}
        for item in prepared:
            earliest.setdefault(item.account_id, item)
        for account, item in earliest.items():
            latest = db.execute(
                select(func.max(Report.report_run_date)).where(Report.account_id == account)
            ).scalar()
            if latest is None:
                continue
            if item.report_date == latest:
                raise DuplicateReportError(
                    f"{item.filename}: a report dated {latest.isoformat()} was already ingested for account {account}.",
                    filename=item.filename,
                )
            if item.report_date < latest:
                raise ChronologyError(
                    f"{item.filename}: report date {item.report_date.isoformat()} is earlier than the latest "
                    f"ingested report ({latest.isoformat()}) for account {account}.",
                    filename=item.filename,
                )

    def _apply(
        self,
        prepared: Sequence[PreparedFile],
        batch_id: str,
        operation: IngestOperation,
    ) -> list[FileIngestResult]:
        accounts = sorted({item.account_id for item in prepared})
        with UnitOfWork(self.session_factory) as uow:
            db = uow.session
            try:
                with self.lock_manager.hold(db, accounts):
                    # A cancel accepted while waiting for the lock discards the batch.
                    operation.raise_if_cancelled()
                    self._check_stored_chronology(db, prepared)
                    results = []
                    for item in prepared:
                        results.append(self._ingest_file(db, item, batch_id, operation))
                        operation.file_done()
                    uow.commit()
            except SQLAlchemyError as e:
                raise StorageError(f"Database error while ingesting batch {batch_id}: {e}") from e
        return results

    def _ingest_file(
        self,
        db: Session,
        item: PreparedFile,
        batch_id: str,
        operation: IngestOperation,
    ) -> FileIngestResult:
        operation.transition(IngestState.ARCHIVING, current_file=item.filename)
        findings = item.normalization.findings
        report = Report(
            filename=item.filename,
            source_format=item.source_format,
            report_run_date=item.report_date,
            report_date_source=item.report_date_source,
            account_id=item.account_id,
            finding_count=len(findings),
            skipped_count=item.normalization.skipped,
            status="PROCESSED",
            batch_id=batch_id,
        )
        db.add(report)
        db.flush()

        live = list(
            db.scalars(
                select(Finding).where(Finding.account_id == item.account_id).order_by(Finding.id)
            )
        )
        previous, archived = _archive_snapshot(db, report, live, datetime.now(timezone.utc))

        operation.transition(IngestState.REPLACING)
        _apply_replacement(db, report, live, findings)

        operation.transition(IngestState.DIFFING)
        diff = compute_diff(previous, [f.match_key for f in findings], item.report_date)
        _mark_fixed(archived, diff.fixed)
        summary = summarize_fixed(diff.fixed)
        db.add(
            DiffSummary(
                report_id=report.id,
                account_id=item.account_id,
                new_count=len(diff.new_keys),
                active_count=len(diff.active_keys),
                fixed_count=summary.total_fixed,
                fixed_by_severity=summary.by_severity,
                fixed_by_fix_available=summary.by_fix_available,
                total_days_active=summary.total_days_active,
                avg_days_active=summary.avg_days_active,
            )
        )
        db.flush()

        logger.info(
            "Report ingested",
            extra={
                "batch_id": batch_id,
                "report_file": item.filename,
                "report_id": report.id,
                "account_id": item.account_id,
                "report_date": item.report_date.isoformat(),
                "new_count": len(diff.new_keys),
                "active_count": len(diff.active_keys),
                "fixed_count": summary.total_fixed,
                "skipped": item.normalization.skipped,
            },
        )
        return FileIngestResult(
            filename=item.filename,
            report_id=report.id,
            format=item.source_format,
            report_date=item.report_date,
            report_date_source=item.report_date_source,
            account_id=item.account_id,
            finding_count=len(findings),
            skipped=item.normalization.skipped,
            diagnostics=item.normalization.diagnostics,
            new_count=len(diff.new_keys),
            active_count=len(diff.active_keys),
            fixed=summary,
        )
