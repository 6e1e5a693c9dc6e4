"""Tests for the historical diff: classification, effective fixed date, days active and summaries."""

import unittest
from datetime import date, datetime, timezone

from vulntrail.services.diff import (
    FindingSnapshot,
    compute_days_active,
    compute_diff,
    effective_fixed_date,
    summarize_fixed,
)


def _dt(y: int, m: int, d: int) -> datetime:
    return datetime(y, m, d, 8, 0, tzinfo=timezone.utc)


def _snap(key: str, first: datetime, last: datetime, severity: str = "HIGH", fix: str = "YES") -> FindingSnapshot:
    return FindingSnapshot(
        match_key=key,
        severity=severity,
        fix_available=fix,
        first_observed_at=first,
        last_observed_at=last,
    )


class TestComputeDiff(unittest.TestCase):
    def test_abc_to_bcd(self) -> None:
        previous = {k: _snap(k, _dt(2024, 1, 10), _dt(2024, 1, 10)) for k in ("A", "B", "C")}
        result = compute_diff(previous, ["B", "C", "D"], date(2024, 2, 1))
        self.assertEqual(result.new_keys, ["D"])
        self.assertEqual(result.active_keys, ["B", "C"])
        self.assertEqual([f.match_key for f in result.fixed], ["A"])
        self.assertEqual(result.fixed[0].fixed_date, date(2024, 2, 1))
        self.assertEqual(result.fixed[0].days_active, 22)

    def test_first_report_everything_new(self) -> None:
        result = compute_diff({}, ["A", "B"], date(2024, 1, 10))
        self.assertEqual(result.new_keys, ["A", "B"])
        self.assertEqual(result.fixed, [])

    def test_empty_report_fixes_everything(self) -> None:
        previous = {"A": _snap("A", _dt(2024, 1, 1), _dt(2024, 1, 5))}
        result = compute_diff(previous, [], date(2024, 1, 20))
        self.assertEqual(len(result.fixed), 1)
        self.assertEqual(result.new_keys, [])

    def test_repeated_current_keys_counted_once(self) -> None:
        result = compute_diff({}, ["A", "A"], date(2024, 1, 10))
        self.assertEqual(result.new_keys, ["A"])


class TestFixedDateAndDuration(unittest.TestCase):
    def test_days_active_plain_year(self) -> None:
        previous = {"A": _snap("A", _dt(2023, 1, 10), _dt(2023, 2, 1))}
        fixed = compute_diff(previous, [], date(2023, 3, 1)).fixed[0]
        self.assertEqual(fixed.fixed_date, date(2023, 3, 1))
        self.assertEqual(fixed.days_active, 50)

    def test_days_active_counts_leap_day(self) -> None:
        previous = {"A": _snap("A", _dt(2024, 1, 10), _dt(2024, 2, 1))}
        fixed = compute_diff(previous, [], date(2024, 3, 1)).fixed[0]
        self.assertEqual(fixed.days_active, 51)

    def test_last_sighting_later_than_report_date_wins(self) -> None:
        self.assertEqual(effective_fixed_date(date(2024, 3, 1), _dt(2024, 3, 5)), date(2024, 3, 5))
        self.assertEqual(effective_fixed_date(date(2024, 3, 1), _dt(2024, 2, 5)), date(2024, 3, 1))

    def test_naive_timestamps_treated_as_utc(self) -> None:
        self.assertEqual(
            effective_fixed_date(date(2024, 3, 1), datetime(2024, 3, 2, 23, 59)),
            date(2024, 3, 2),
        )

    def test_negative_duration_clamped_and_logged(self) -> None:
        previous = {"A": _snap("A", _dt(2024, 4, 1), _dt(2024, 3, 1))}
        with self.assertLogs("vulntrail.services.diff", level="ERROR") as logs:
            result = compute_diff(previous, [], date(2024, 3, 10))
        entry = result.fixed[0]
        self.assertEqual(entry.days_active, 0)
        self.assertTrue(entry.clamped)
        self.assertEqual(logs.records[0].match_key, "A")

    def test_compute_days_active(self) -> None:
        self.assertEqual(compute_days_active(_dt(2024, 1, 1), date(2024, 1, 1)), (0, False))
        self.assertEqual(compute_days_active(_dt(2024, 1, 2), date(2024, 1, 1)), (0, True))


class TestSummarizeFixed(unittest.TestCase):
    def test_counts_and_average(self) -> None:
        previous = {
            "A": _snap("A", _dt(2024, 1, 1), _dt(2024, 1, 1), severity="CRITICAL", fix="YES"),
            "B": _snap("B", _dt(2024, 1, 6), _dt(2024, 1, 6), severity="HIGH", fix="NO"),
            "C": _snap("C", _dt(2024, 1, 8), _dt(2024, 1, 8), severity="HIGH", fix="YES"),
        }
        summary = summarize_fixed(compute_diff(previous, [], date(2024, 1, 11)).fixed)
        self.assertEqual(summary.total_fixed, 3)
        self.assertEqual(summary.by_severity["CRITICAL"], 1)
        self.assertEqual(summary.by_severity["HIGH"], 2)
        self.assertEqual(summary.by_severity["LOW"], 0)
        self.assertEqual(summary.by_fix_available, {"YES": 2, "NO": 1})
        # 10 + 5 + 3 days
        self.assertEqual(summary.total_days_active, 18)
        self.assertEqual(summary.avg_days_active, 6.0)

    def test_empty(self) -> None:
        summary = summarize_fixed([])
        self.assertEqual(summary.total_fixed, 0)
        self.assertEqual(summary.avg_days_active, 0.0)
        self.assertEqual(set(summary.by_severity.values()), {0})


if __name__ == "__main__":
    unittest.main()
