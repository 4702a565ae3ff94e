import unittest
from dataclasses import dataclass

from dtr.services.period_calc import build_week_buckets, monthly_official_minutes, summarize_period


@dataclass
class _Entry:
    day: int
    total_minutes: int
    confirmation_status: str = "unconfirmed"
    excused_status: str = "none"


def _confirmed(day: int, minutes: int) -> _Entry:
    return _Entry(day=day, total_minutes=minutes, confirmation_status="confirmed")


class WeekBucketTests(unittest.TestCase):
    def test_month_splits_at_sundays(self) -> None:
        weeks = build_week_buckets([], year=2026, month=3)

        self.assertEqual([week.week_num for week in weeks], [1, 2, 3, 4, 5])
        self.assertEqual(weeks[0].days, [2, 3, 4, 5, 6, 7])
        self.assertEqual(weeks[-1].days, [30, 31])
        for week in weeks:
            self.assertNotIn(8, week.days)
            self.assertEqual(week.minutes, 0)

    def test_only_confirmed_capped_minutes_count(self) -> None:
        entries = [_confirmed(2, 300), _confirmed(3, 300), _Entry(day=4, total_minutes=600)]

        weeks = build_week_buckets(entries, year=2026, month=3)

        self.assertEqual(weeks[0].minutes, 600)
        self.assertEqual(weeks[0].hours, 10.0)
        self.assertFalse(weeks[0].exceeds)

    def test_confirmed_long_day_is_capped(self) -> None:
        weeks = build_week_buckets([_confirmed(9, 600)], year=2026, month=3)
        self.assertEqual(weeks[1].minutes, 300)

    def test_sunday_entries_are_ignored(self) -> None:
        weeks = build_week_buckets([_confirmed(8, 300)], year=2026, month=3)
        self.assertEqual(sum(week.minutes for week in weeks), 0)

    def test_exactly_at_limit_is_not_a_violation(self) -> None:
        entries = [_confirmed(day, 300) for day in range(2, 8)]

        weeks = build_week_buckets(entries, year=2026, month=3)

        self.assertEqual(weeks[0].minutes, 1800)
        self.assertFalse(weeks[0].exceeds)

    def test_over_limit_is_flagged(self) -> None:
        entries = [_confirmed(day, 300) for day in range(2, 7)]

        weeks = build_week_buckets(entries, year=2026, month=3, weekly_limit_hours=20)

        self.assertTrue(weeks[0].exceeds)
        self.assertFalse(weeks[1].exceeds)

    def test_month_starting_midweek(self) -> None:
        # April 2026 starts on a Wednesday.
        weeks = build_week_buckets([], year=2026, month=4)
        self.assertEqual(weeks[0].days, [1, 2, 3, 4])


class MonthlyTotalTests(unittest.TestCase):
    def test_counts_unconfirmed_days(self) -> None:
        entries = [_confirmed(2, 300), _confirmed(3, 300), _Entry(day=4, total_minutes=600)]
        self.assertEqual(monthly_official_minutes(entries, year=2026, month=3), 900)

    def test_skips_sundays_and_days_outside_month(self) -> None:
        entries = [_Entry(day=1, total_minutes=200), _Entry(day=10, total_minutes=120), _Entry(day=32, total_minutes=60)]
        self.assertEqual(monthly_official_minutes(entries, year=2026, month=3), 120)


class SummaryTests(unittest.TestCase):
    def test_summary_counts_and_flags(self) -> None:
        entries = [
            _confirmed(2, 300),
            _Entry(day=3, total_minutes=600),
            _Entry(day=4, total_minutes=300, confirmation_status="confirmed", excused_status="excused"),
            _Entry(day=5, total_minutes=0),
        ]

        summary = summarize_period(entries, year=2026, month=3)

        self.assertEqual(summary.raw_minutes, 1200)
        self.assertEqual(summary.official_minutes, 900)
        self.assertEqual(summary.confirmed_official_minutes, 600)
        self.assertEqual(summary.days_worked, 3)
        self.assertEqual(summary.confirmed_days, 2)
        self.assertEqual(summary.unconfirmed_days, 2)
        self.assertEqual(summary.excused_days, 1)
        self.assertTrue(summary.has_exceeded_daily_cap)
        self.assertFalse(summary.has_violations)
        self.assertEqual(summary.flags, ["DAILY_CAP_EXCEEDED"])
        self.assertEqual(summary.official_duration, "15h 00m")

    def test_weekly_violation_flag(self) -> None:
        entries = [_confirmed(day, 300) for day in range(9, 15)]

        summary = summarize_period(entries, year=2026, month=3, weekly_limit_hours=25)

        self.assertTrue(summary.has_violations)
        self.assertIn("WEEKLY_LIMIT_EXCEEDED", summary.flags)


if __name__ == "__main__":
    unittest.main()
