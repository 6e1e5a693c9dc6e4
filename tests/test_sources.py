"""Tests for export format detection, JSON/CSV parsing and CSV row mapping."""

import json
import unittest
from datetime import date

from vulntrail.services.errors import MalformedReportError, UnsupportedFormatError
from vulntrail.services.scanner_mappers import apply_generic_aliases, map_csv_row, split_list
from vulntrail.services.sources import (
    InspectorCsvSource,
    InspectorJsonSource,
    detect_source,
    parse_export,
    supported_extensions,
)

MB = 1024 * 1024

CSV_HEADER = (
    "AWS Account Id,Finding ARN,Title,Description,Severity,Status,Fix Available,"
    "First Seen,Last Seen,Resource ID,Resource Type,Platform,Region,Vulnerability Id,"
    "Affected Packages,Package Installed Version,Fixed in Version,Reference Urls,Inspector Score"
)


def _csv(*rows: str, header: str = CSV_HEADER) -> bytes:
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


class TestDetectSource(unittest.TestCase):
    def test_json_and_csv_by_extension(self) -> None:
        self.assertIsInstance(detect_source("05-01-2024.json", b"{}", MB, 10), InspectorJsonSource)
        self.assertIsInstance(detect_source("05-01-2024.CSV", b"", MB, 10), InspectorCsvSource)

    def test_unsupported_extension_names_supported_ones(self) -> None:
        with self.assertRaises(UnsupportedFormatError) as ctx:
            detect_source("report.xlsx", b"", MB, 10)
        self.assertIn(".xlsx", ctx.exception.message)
        for ext in supported_extensions():
            self.assertIn(ext, ctx.exception.message)
        self.assertEqual(ctx.exception.filename, "report.xlsx")

    def test_missing_extension(self) -> None:
        with self.assertRaises(UnsupportedFormatError):
            detect_source("report", b"", MB, 10)

    def test_oversized_file_rejected(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            detect_source("05-01-2024.json", b"x" * 2048, 1024, 10)
        self.assertIn("must not exceed", ctx.exception.message)


class TestJsonSource(unittest.TestCase):
    def test_parses_findings_and_embedded_date(self) -> None:
        content = json.dumps(
            {"reportDate": "2024-05-01T10:00:00Z", "findings": [{"findingArn": "a"}, {"arn": "b"}]}
        ).encode()
        parsed = parse_export("export.json", content, MB, 10)
        self.assertEqual(parsed.source_format, "json")
        self.assertEqual(len(parsed.records), 2)
        self.assertEqual(parsed.embedded_report_date, date(2024, 5, 1))
        # Alias keys are mapped to native ones.
        self.assertEqual(parsed.records[1]["findingArn"], "b")

    def test_empty_findings_array_is_valid(self) -> None:
        parsed = parse_export("05-01-2024.json", b'{"findings": []}', MB, 10)
        self.assertEqual(parsed.records, [])
        self.assertIsNone(parsed.embedded_report_date)

    def test_utf8_bom_accepted(self) -> None:
        parsed = parse_export("05-01-2024.json", b'\xef\xbb\xbf{"findings": []}', MB, 10)
        self.assertEqual(parsed.records, [])

    def test_top_level_array_rejected(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("05-01-2024.json", b'[{"findingArn": "a"}]', MB, 10)
        self.assertIn("findings", ctx.exception.message)

    def test_missing_findings_key_rejected(self) -> None:
        with self.assertRaises(MalformedReportError):
            parse_export("05-01-2024.json", b'{"items": []}', MB, 10)

    def test_invalid_json_reports_position(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("05-01-2024.json", b'{"findings": [', MB, 10)
        self.assertIn("line 1", ctx.exception.message)

    def test_non_object_finding_rejected(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("05-01-2024.json", b'{"findings": [{}, 3]}', MB, 10)
        self.assertIn("index 1", ctx.exception.message)

    def test_invalid_utf8_rejected(self) -> None:
        with self.assertRaises(MalformedReportError):
            parse_export("05-01-2024.json", b'{"findings": ["\xff"]}', MB, 10)

    def test_record_limit(self) -> None:
        content = json.dumps({"findings": [{} for _ in range(4)]}).encode()
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("05-01-2024.json", content, MB, 3)
        self.assertIn("limit of 3", ctx.exception.message)


class TestCsvSource(unittest.TestCase):
    def test_rows_mapped_to_structured_shape(self) -> None:
        content = _csv(
            '111122223333,arn:f/1,CVE-2024-1 - openssl,desc,High,Active,YES,'
            '2024-01-10T08:00:00Z,2024-02-01T08:00:00Z,i-1,AWS_EC2_INSTANCE,AMAZON_LINUX_2,us-east-1,'
            'CVE-2024-1,"openssl,libssl","1.0.2k,1.0.2k","1.0.2zk",'
            '"https://a.example,https://b.example",7.5'
        )
        parsed = parse_export("02-01-2024.csv", content, MB, 10)
        self.assertEqual(parsed.source_format, "csv")
        self.assertEqual(len(parsed.records), 1)
        record = parsed.records[0]
        self.assertEqual(record["findingArn"], "arn:f/1")
        self.assertEqual(record["awsAccountId"], "111122223333")
        self.assertEqual(record["inspectorScore"], 7.5)
        self.assertEqual(record["resources"][0]["details"], {"platform": "AMAZON_LINUX_2"})
        details = record["packageVulnerabilityDetails"]
        self.assertEqual(details["vulnerabilityId"], "CVE-2024-1")
        self.assertEqual(details["referenceUrls"], ["https://a.example", "https://b.example"])
        self.assertEqual(
            details["vulnerablePackages"],
            [
                {"name": "openssl", "version": "1.0.2k", "fixedInVersion": "1.0.2zk"},
                {"name": "libssl", "version": "1.0.2k"},
            ],
        )

    def test_header_only_file_has_no_records(self) -> None:
        parsed = parse_export("02-01-2024.csv", _csv(), MB, 10)
        self.assertEqual(parsed.records, [])

    def test_empty_file_rejected(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("02-01-2024.csv", b"", MB, 10)
        self.assertIn("no CSV header", ctx.exception.message)

    def test_missing_required_column_rejected(self) -> None:
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("02-01-2024.csv", _csv(header="Finding ARN,Title"), MB, 10)
        self.assertIn("Severity", ctx.exception.message)

    def test_row_with_extra_cells_rejected(self) -> None:
        header = "AWS Account Id,Finding ARN,Title,Description,Severity,Status,First Seen,Last Seen"
        content = _csv("1,arn,t,d,HIGH,ACTIVE,2024-01-01,2024-01-02,surplus", header=header)
        with self.assertRaises(MalformedReportError) as ctx:
            parse_export("02-01-2024.csv", content, MB, 10)
        self.assertIn("column count", ctx.exception.message)

    def test_row_with_missing_cells_rejected(self) -> None:
        header = "AWS Account Id,Finding ARN,Title,Description,Severity,Status,First Seen,Last Seen"
        content = _csv("1,arn,t,d,HIGH", header=header)
        with self.assertRaises(MalformedReportError):
            parse_export("02-01-2024.csv", content, MB, 10)


class TestScannerMappers(unittest.TestCase):
    def test_split_list(self) -> None:
        self.assertEqual(split_list(" a, b ,,c "), ["a", "b", "c"])
        self.assertEqual(split_list(None), [])
        self.assertEqual(split_list("  "), [])

    def test_map_csv_row_without_resource(self) -> None:
        out = map_csv_row({"Finding ARN": "arn", "Title": "t", "Epss Score": "0.5"})
        self.assertEqual(out["resources"], [])
        self.assertEqual(out["epss"], {"score": 0.5})
        self.assertEqual(out["packageVulnerabilityDetails"], {"vulnerablePackages": []})

    def test_native_keys_win_over_aliases(self) -> None:
        out = apply_generic_aliases({"arn": "alias", "findingArn": "native", "account_id": "1"})
        self.assertEqual(out["findingArn"], "native")
        self.assertEqual(out["awsAccountId"], "1")
        self.assertNotIn("account_id", out)


if __name__ == "__main__":
    unittest.main()
