"""
CLI entrypoint for ingesting scanner exports without the HTTP API, e.g.:

  python -m vulntrail.ingest 05-01-2024.json 05-08-2024.csv --account-id 123456789012

Files are ingested as one batch, in report-date order. Exit status: 0 committed,
2 rejected input (nothing stored), 1 system failure (rolled back; safe to retry).
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path

from vulntrail.core.config import get_settings
from vulntrail.core.database import SessionLocal
from vulntrail.services.errors import InputValidationError, SystemIngestError
from vulntrail.services.ingest import IngestionOrchestrator

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_SYSTEM_ERROR = 1
EXIT_INPUT_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m vulntrail.ingest",
        description="Ingest one or more AWS Inspector exports (.json or .csv) as a single batch.",
    )
    parser.add_argument("files", nargs="+", type=Path, help="Export files to ingest.")
    parser.add_argument(
        "--account-id",
        default=None,
        help="Account the files belong to; required only when the findings carry no account id.",
    )
    parser.add_argument(
        "--today",
        type=date.fromisoformat,
        default=None,
        help="Override the current date (YYYY-MM-DD) used to validate report dates.",
    )
    return parser


def main(argv: list[str] | None = None, orchestrator: IngestionOrchestrator | None = None) -> int:
    """Run one ingestion batch and return the process exit status."""
    args = build_parser().parse_args(argv)
    orchestrator = orchestrator or IngestionOrchestrator(SessionLocal, get_settings())

    files: list[tuple[str, bytes]] = []
    for path in args.files:
        try:
            files.append((path.name, path.read_bytes()))
        except OSError as e:
            logger.error("Cannot read %s: %s", path, e)
            return EXIT_INPUT_ERROR

    try:
        result = orchestrator.run(files, account_id=args.account_id, today=args.today)
    except InputValidationError as e:
        logger.error("Batch rejected: %s", e.message)
        return EXIT_INPUT_ERROR
    except SystemIngestError as e:
        logger.error("Batch failed and was rolled back (retryable): %s", e.message)
        return EXIT_SYSTEM_ERROR

    for item in result.files:
        fixed = item.fixed.total_fixed if item.fixed else 0
        logger.info(
            "%s: report %s dated %s for account %s: %s findings (%s new, %s active, %s fixed), %s skipped",
            item.filename,
            item.report_id,
            item.report_date.isoformat(),
            item.account_id,
            item.finding_count,
            item.new_count,
            item.active_count,
            fixed,
            item.skipped,
        )
        for diag in item.diagnostics:
            logger.warning("%s: record %s skipped: %s", item.filename, diag.index, diag.reason)
    logger.info("Batch %s committed (%s files)", result.batch_id, len(result.files))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
