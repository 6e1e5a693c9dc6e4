"""Format detection and parsing of scanner exports into raw finding records."""

import csv
import io
import json
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import PurePath
from typing import Any

from pydantic import BaseModel, Field

from vulntrail.services.errors import MalformedReportError, UnsupportedFormatError
from vulntrail.services.scanner_mappers import (
    CSV_REQUIRED_COLUMNS,
    apply_generic_aliases,
    map_csv_row,
)

logger = logging.getLogger(__name__)

# Top-level keys that may carry the report-run date inside a JSON export.
EMBEDDED_DATE_KEYS = ("reportDate", "reportRunDate", "generatedAt", "exportedAt")


class ParsedReport(BaseModel):
    """Raw records in the structured finding shape, plus any report date found in the file itself."""

    source_format: str
    records: list[dict[str, Any]] = Field(default_factory=list)
    embedded_report_date: date | None = None


def _decode(content: bytes, filename: str) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedReportError(
            f"{filename}: file is not valid UTF-8 ({e.reason} at byte {e.start}).",
            filename=filename,
        ) from e


def _coerce_date(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


class RawFindingSource(ABC):
    """One export format. Implementations reject the whole file on any structural problem."""

    format_name: str = ""
    extensions: tuple[str, ...] = ()

    def __init__(self, max_records: int) -> None:
        self.max_records = max_records

    def accepts(self, filename: str) -> bool:
        return PurePath(filename).suffix.lower() in self.extensions

    @abstractmethod
    def parse(self, content: bytes, filename: str) -> ParsedReport:
        """Decode and structurally validate content; return every raw record in file order."""

    def _check_record_limit(self, count: int, filename: str) -> None:
        if count > self.max_records:
            raise MalformedReportError(
                f"{filename}: {count} findings exceed the limit of {self.max_records} per file.",
                filename=filename,
            )


class InspectorJsonSource(RawFindingSource):
    """Native export: {"findings": [ {...}, ... ]} with optional report metadata at the top level."""

    format_name = "json"
    extensions = (".json",)

    def parse(self, content: bytes, filename: str) -> ParsedReport:
        text = _decode(content, filename)
        stripped = text.lstrip()
        if not stripped.startswith("{"):
            raise MalformedReportError(
                f"{filename}: expected a JSON object with a 'findings' array.",
                filename=filename,
            )
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedReportError(
                f"{filename}: invalid JSON at line {e.lineno} column {e.colno}: {e.msg}.",
                filename=filename,
            ) from e
        findings = data.get("findings") if isinstance(data, dict) else None
        if not isinstance(findings, list):
            raise MalformedReportError(
                f"{filename}: top-level 'findings' array is missing.",
                filename=filename,
            )
        self._check_record_limit(len(findings), filename)
        records: list[dict[str, Any]] = []
        for i, item in enumerate(findings):
            if not isinstance(item, dict):
                raise MalformedReportError(
                    f"{filename}: finding at index {i} must be an object.",
                    filename=filename,
                )
            records.append(apply_generic_aliases(item))

        embedded = None
        for key in EMBEDDED_DATE_KEYS:
            embedded = _coerce_date(data.get(key))
            if embedded is not None:
                break
        return ParsedReport(
            source_format=self.format_name,
            records=records,
            embedded_report_date=embedded,
        )


class InspectorCsvSource(RawFindingSource):
    """Flattened console export: one finding per row, packages and URLs comma-joined in cells."""

    format_name = "csv"
    extensions = (".csv",)

    def parse(self, content: bytes, filename: str) -> ParsedReport:
        text = _decode(content, filename)
        reader = csv.DictReader(io.StringIO(text, newline=""), restkey="__extra__")
        try:
            header = reader.fieldnames
            if not header:
                raise MalformedReportError(
                    f"{filename}: file is empty; no CSV header found.",
                    filename=filename,
                )
            header = [h.strip() for h in header]
            reader.fieldnames = header
            missing = [c for c in CSV_REQUIRED_COLUMNS if c not in header]
            if missing:
                raise MalformedReportError(
                    f"{filename}: missing required columns: {', '.join(missing)}.",
                    filename=filename,
                )
            records: list[dict[str, Any]] = []
            for row in reader:
                line = reader.line_num
                if "__extra__" in row or any(v is None for v in row.values()):
                    raise MalformedReportError(
                        f"{filename}: row ending at line {line} does not match the header column count.",
                        filename=filename,
                    )
                records.append(map_csv_row(row))
                self._check_record_limit(len(records), filename)
        except csv.Error as e:
            raise MalformedReportError(
                f"{filename}: CSV parse error at line {reader.line_num}: {e}.",
                filename=filename,
            ) from e
        return ParsedReport(source_format=self.format_name, records=records)


SOURCES: tuple[type[RawFindingSource], ...] = (InspectorJsonSource, InspectorCsvSource)

# Width of reports.filename.
MAX_FILENAME_LENGTH = 255


def supported_extensions() -> list[str]:
    return [ext for source in SOURCES for ext in source.extensions]


def detect_source(filename: str, content: bytes, max_bytes: int, max_records: int) -> RawFindingSource:
    """
    Pick the source for a file by extension. Size is checked here so oversized
    uploads are rejected before any decoding work.
    """
    if len(filename) > MAX_FILENAME_LENGTH:
        raise MalformedReportError(
            f"{filename[:64]}...: file names must not exceed {MAX_FILENAME_LENGTH} characters.",
            filename=filename,
        )
    for source_cls in SOURCES:
        source = source_cls(max_records=max_records)
        if source.accepts(filename):
            if len(content) > max_bytes:
                raise MalformedReportError(
                    f"{filename}: file size must not exceed {max_bytes // (1024 * 1024)} MB.",
                    filename=filename,
                )
            logger.debug("Detected %s export for %s", source.format_name, filename)
            return source
    suffix = PurePath(filename).suffix.lower() or "unknown"
    raise UnsupportedFormatError(
        f"{filename}: unsupported file format '{suffix}'. Supported extensions: {', '.join(supported_extensions())}.",
        filename=filename,
    )


def parse_export(filename: str, content: bytes, max_bytes: int, max_records: int) -> ParsedReport:
    """Detect the format of one file and parse it."""
    source = detect_source(filename, content, max_bytes=max_bytes, max_records=max_records)
    return source.parse(content, filename)
