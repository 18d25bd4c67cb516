import io
import os
import stat
import tempfile
import unittest
from contextlib import redirect_stdout
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import patch

from finman import i18n
from finman.cli import FinanceCLI, parse_number
from finman.codec import escape, join_escaped, split_escaped, unescape
from finman.dates import (
    add_days, add_months, days_in_month, format_date, months_between_inclusive,
    next_monthly_on, parse_date
)
from finman.interest import apply_interest_up_to
from finman.logic import Account
from finman.main import startup
from finman.models import (
    InterestRule, Periodicity, Schedule, ScheduleKind, Settings,
    category_key, normalize_key, resolve_display_name, sanitize_display_name
)
from finman.schedules import process_schedules_up_to
from finman.storage import delete_save, dumps, load_data, loads, save_data


def monthly(day, amount, first, note="", **kwargs):
    return Schedule(ScheduleKind.MONTHLY_ON_DAY, day, amount, first, note, **kwargs)


def every(days, amount, first, note="", **kwargs):
    return Schedule(ScheduleKind.EVERY_INTERVAL, days, amount, first, note, **kwargs)


class TestDates(unittest.TestCase):
    def test_days_in_month(self):
        """Month lengths follow the Gregorian leap-year rule"""
        self.assertEqual(days_in_month(2024, 2), 29)
        self.assertEqual(days_in_month(2023, 2), 28)
        self.assertEqual(days_in_month(1900, 2), 28)
        self.assertEqual(days_in_month(2000, 2), 29)
        self.assertEqual(days_in_month(2023, 4), 30)
        self.assertEqual(days_in_month(2023, 12), 31)

    def test_add_months_clamps_month_end(self):
        """Jan 31 + 1 month lands on the last day of February"""
        self.assertEqual(add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2023, 1, 31), 1), date(2023, 2, 28))
        self.assertEqual(add_months(date(2024, 11, 30), 3), date(2025, 2, 28))

    def test_add_months_negative_and_rollover(self):
        self.assertEqual(add_months(date(2024, 1, 15), -1), date(2023, 12, 15))
        self.assertEqual(add_months(date(2024, 3, 31), -1), date(2024, 2, 29))
        self.assertEqual(add_months(date(2023, 12, 10), 1), date(2024, 1, 10))
        self.assertEqual(add_months(date(2024, 5, 20), -17), date(2022, 12, 20))

    def test_add_days(self):
        self.assertEqual(add_days(date(2024, 2, 28), 1), date(2024, 2, 29))
        self.assertEqual(add_days(date(2023, 12, 31), 1), date(2024, 1, 1))
        self.assertEqual(add_days(date(2024, 3, 1), -1), date(2024, 2, 29))
        self.assertEqual(add_days(date(2024, 3, 30), 7), date(2024, 4, 6))

    def test_next_monthly_on(self):
        """Result is always strictly after the starting date"""
        self.assertEqual(next_monthly_on(date(2024, 1, 15), 1), date(2024, 2, 1))
        self.assertEqual(next_monthly_on(date(2024, 1, 15), 20), date(2024, 1, 20))
        self.assertEqual(next_monthly_on(date(2024, 1, 20), 20), date(2024, 2, 20))
        self.assertEqual(next_monthly_on(date(2024, 1, 31), 31), date(2024, 2, 29))
        self.assertEqual(next_monthly_on(date(2024, 2, 29), 31), date(2024, 3, 31))
        self.assertEqual(next_monthly_on(date(2023, 1, 30), 30), date(2023, 2, 28))
        self.assertEqual(next_monthly_on(date(2024, 12, 5), 3), date(2025, 1, 3))

    def test_months_between_inclusive(self):
        self.assertEqual(months_between_inclusive(date(2024, 1, 1), date(2024, 1, 1)), 1)
        self.assertEqual(months_between_inclusive(date(2024, 1, 15), date(2024, 3, 20)), 3)
        self.assertEqual(months_between_inclusive(date(2024, 1, 15), date(2024, 3, 14)), 2)
        self.assertEqual(months_between_inclusive(date(2024, 1, 31), date(2024, 4, 30)), 4)
        self.assertEqual(months_between_inclusive(date(2024, 3, 1), date(2024, 2, 1)), 0)

    def test_parse_date_strict(self):
        """Only exact YYYY-MM-DD strings with valid calendar values parse"""
        self.assertEqual(parse_date("2024-02-29"), date(2024, 2, 29))
        for bad in ("2023-02-29", "2024-13-01", "2024-00-10", "20240101", "2024/01/01",
                    "2024-1-01", "", "2024-01-01 ", "abcd-ef-gh", "0000-01-01", "2024-04-31"):
            with self.subTest(text=bad):
                with self.assertRaises(ValueError):
                    parse_date(bad)

    def test_format_date(self):
        self.assertEqual(format_date(date(2024, 3, 5)), "2024-03-05")
        self.assertEqual(format_date(date(999, 1, 2)), "0999-01-02")


class TestCodec(unittest.TestCase):
    def test_escape(self):
        self.assertEqual(escape("a|b\\c\nd"), "a\\|b\\\\c\\nd")
        self.assertEqual(escape("plain text"), "plain text")

    def test_unescape_round_trip(self):
        """unescape(escape(s)) == s for delimiters, backslashes and newlines"""
        samples = ["", "|", "\\", "\n", "a|b", "\\|", "|\\n|", "x\\\\y", "line1\nline2|", "\\\n\\", "trailing\\"]
        for s in samples:
            with self.subTest(s=s):
                self.assertEqual(unescape(escape(s)), s)

    def test_unescape_edge_cases(self):
        self.assertEqual(unescape("abc\\"), "abc\\")
        self.assertEqual(unescape("\\x"), "x")
        self.assertEqual(unescape("a\\nb"), "a\nb")

    def test_split_escaped(self):
        self.assertEqual(split_escaped(""), [""])
        self.assertEqual(split_escaped("a|b||c"), ["a", "b", "", "c"])
        self.assertEqual(split_escaped("a\\|b|c"), ["a|b", "c"])
        self.assertEqual(split_escaped("x\\n|y\\\\"), ["x\n", "y\\"])

    def test_split_join_round_trip(self):
        fields = ["2024-01-01", "a|b", "back\\slash", "multi\nline", "", "\\n literal", "|\\|"]
        self.assertEqual(split_escaped(join_escaped(fields)), fields)


class TestCategoryNames(unittest.TestCase):
    def test_sanitize_display_name(self):
        self.assertEqual(sanitize_display_name("  Food!!  & Drinks "), "Food Drinks")
        self.assertEqual(sanitize_display_name("!!!"), "Category")
        self.assertEqual(sanitize_display_name("Rent 2024"), "Rent 2024")

    def test_resolve_display_name(self):
        self.assertEqual(resolve_display_name(""), "Other")
        self.assertEqual(resolve_display_name("   "), "Other")
        self.assertEqual(resolve_display_name(None), "Other")

    def test_category_key(self):
        self.assertEqual(category_key("  Saving "), "saving")
        self.assertEqual(category_key("SAVING"), "saving")
        self.assertEqual(category_key(""), "other")
        self.assertEqual(normalize_key(""), "other")

    def test_interest_rule_monthly_rate(self):
        monthly_rule = InterestRule(category_key("Saving"), 1.0, Periodicity.MONTHLY, date(2024, 1, 1), date(2024, 1, 1))
        annual_rule = InterestRule(category_key("Saving"), 12.0, Periodicity.ANNUAL, date(2024, 1, 1), date(2024, 1, 1))
        self.assertAlmostEqual(monthly_rule.monthly_rate, 0.01)
        self.assertAlmostEqual(annual_rule.monthly_rate, 0.01)


class TestLedger(unittest.TestCase):
    def setUp(self):
        self.account = Account()

    def assertCategoryMapsAligned(self, account):
        keys = set(account.categories())
        self.assertEqual(keys, set(account.balances()))
        self.assertEqual(keys, set(account.allocations()))

    def test_default_categories(self):
        """A fresh account has four categories whose weights sum to 100"""
        self.assertEqual(set(self.account.categories()), {"emergency", "entertainment", "saving", "other"})
        self.assertAlmostEqual(sum(self.account.allocations().values()), 100.0)
        self.assertEqual(self.account.total_balance, 0.0)
        self.assertCategoryMapsAligned(self.account)

    def test_post_transaction_creates_category(self):
        tx = self.account.post_transaction(date(2024, 1, 1), 100.0, "Food", "groceries")
        self.assertEqual(tx.category, "Food")
        self.assertEqual(self.account.balances()["food"], 100.0)
        self.assertEqual(self.account.allocations()["food"], 0.0)
        self.assertEqual(self.account.total_balance, 100.0)
        self.assertEqual(len(self.account.transactions), 1)
        self.assertCategoryMapsAligned(self.account)

    def test_post_transaction_uses_existing_display_name(self):
        """Differently cased names resolve to the same category"""
        self.account.post_transaction(date(2024, 1, 1), 100.0, "Food")
        tx = self.account.post_transaction(date(2024, 1, 2), -40.0, "  food ")
        self.assertEqual(tx.category, "Food")
        self.assertEqual(self.account.balances()["food"], 60.0)
        self.assertEqual(self.account.total_balance, 60.0)

    def test_post_transaction_without_category(self):
        tx = self.account.post_transaction(date(2024, 1, 1), -20.0, None)
        self.assertEqual(tx.category, "Other")
        self.assertEqual(self.account.balances()["other"], -20.0)

    def test_allocate_by_percent(self):
        posted = self.account.allocate(date(2024, 1, 1), 1000.0, "Salary")
        amounts = {category_key(t.category): t.amount for t in posted}
        self.assertEqual(amounts, {"emergency": 200.0, "entertainment": 100.0, "saving": 200.0, "other": 500.0})
        self.assertTrue(all(t.note == "Salary (auto alloc)" for t in posted))
        self.assertAlmostEqual(self.account.total_balance, 1000.0)

    def test_allocation_conservation(self):
        """The split always sums back to the original amount"""
        self.account.set_allocation({"A": 33.3, "B": 12.7, "C": 0.1})
        for amount in (333.33, 0.01, 1234567.89, 7.0):
            with self.subTest(amount=amount):
                posted = self.account.allocate(date(2024, 1, 1), amount)
                self.assertAlmostEqual(sum(t.amount for t in posted), amount, places=9)

    def test_allocate_includes_zero_percent_categories(self):
        self.account.post_transaction(date(2024, 1, 1), 5.0, "Food")
        posted = self.account.allocate(date(2024, 1, 2), 100.0)
        self.assertEqual(len(posted), 5)
        food = [t for t in posted if t.category == "Food"]
        self.assertEqual(food[0].amount, 0.0)

    def test_allocate_fallback_when_no_percentages(self):
        account = Account(with_defaults=False)
        posted = account.allocate(date(2024, 1, 1), 100.0, "Bonus")
        self.assertEqual(len(posted), 1)
        self.assertEqual(posted[0].category, "Other")
        self.assertEqual(posted[0].note, "Bonus (auto alloc fallback)")
        self.assertEqual(account.balances()["other"], 100.0)
        self.assertCategoryMapsAligned(account)

    def test_set_allocation_remainder_to_other(self):
        remainder = self.account.set_allocation({"Food": 30, "Rent": 40})
        self.assertEqual(remainder, 30.0)
        alloc = self.account.allocations()
        self.assertEqual(alloc["food"], 30.0)
        self.assertEqual(alloc["rent"], 40.0)
        self.assertEqual(alloc["other"], 30.0)
        self.assertEqual(alloc["emergency"], 0.0)
        self.assertAlmostEqual(sum(alloc.values()), 100.0)
        self.assertCategoryMapsAligned(self.account)

    def test_set_allocation_rejects_bad_input(self):
        """Invalid tables raise and leave the account untouched"""
        before = self.account.allocations()
        with self.assertRaises(ValueError):
            self.account.set_allocation({"Food": 70, "Rent": 40})
        with self.assertRaises(ValueError):
            self.account.set_allocation({"Food": -5})
        self.assertEqual(self.account.allocations(), before)
        self.assertNotIn("food", self.account.categories())

    def test_set_and_remove_interest(self):
        rule = self.account.set_interest("Saving", 2.5, Periodicity.ANNUAL, date(2024, 1, 1))
        self.assertEqual(rule.category_key, "saving")
        self.assertEqual(rule.last_applied_through, date(2024, 1, 1))
        self.assertTrue(self.account.remove_interest("saving"))
        self.assertFalse(self.account.remove_interest("saving"))

    def test_remove_schedule_out_of_range(self):
        with self.assertRaises(ValueError):
            self.account.remove_schedule(0)

    def test_snapshot_restore(self):
        """restore() truncates the log and brings back every table"""
        self.account.post_transaction(date(2024, 1, 1), 100.0, "Other")
        snap = self.account.snapshot()

        self.account.post_transaction(date(2024, 1, 2), 50.0, "Travel")
        self.account.add_schedule(monthly(1, 10.0, date(2024, 2, 1)))
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))
        self.account.set_allocation({"Travel": 100})

        self.account.restore(snap)
        self.assertEqual(len(self.account.transactions), 1)
        self.assertEqual(self.account.total_balance, 100.0)
        self.assertNotIn("travel", self.account.categories())
        self.assertEqual(self.account.schedules, ())
        self.assertEqual(self.account.interest_rules, {})
        self.assertEqual(self.account.allocations()["other"], 50.0)

    def test_restore_rewinds_schedule_progress(self):
        self.account.add_schedule(every(7, 10.0, date(2024, 1, 1)))
        snap = self.account.snapshot()
        process_schedules_up_to(self.account, date(2024, 1, 31))
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 2, 5))

        self.account.restore(snap)
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 1, 1))
        self.assertEqual(self.account.transactions, ())


class TestSchedules(unittest.TestCase):
    def setUp(self):
        self.account = Account()

    def test_monthly_on_31st_clamps(self):
        """Day 31 fires on Jan 31, Feb 29, Mar 31 and Apr 30"""
        self.account.add_schedule(monthly(31, 50.0, date(2024, 1, 31), "Rent", category="Housing"))
        posted = process_schedules_up_to(self.account, date(2024, 4, 30))

        self.assertEqual([t.t_date for t in posted],
                         [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)])
        self.assertTrue(all(t.note == "Scheduled: Rent" and t.category == "Housing" for t in posted))
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 5, 31))
        self.assertEqual(self.account.balances()["housing"], 200.0)

    def test_processing_is_idempotent(self):
        self.account.add_schedule(monthly(15, 20.0, date(2024, 1, 15)))
        first = process_schedules_up_to(self.account, date(2024, 6, 30))
        count = len(self.account.transactions)
        second = process_schedules_up_to(self.account, date(2024, 6, 30))

        self.assertEqual(len(first), 6)
        self.assertEqual(second, [])
        self.assertEqual(len(self.account.transactions), count)

    def test_every_interval(self):
        self.account.add_schedule(every(7, 10.0, date(2024, 1, 1), "Allowance"))
        posted = process_schedules_up_to(self.account, date(2024, 1, 31))
        self.assertEqual([t.t_date.day for t in posted], [1, 8, 15, 22, 29])
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 2, 5))
        self.assertEqual(posted[0].category, "Other")

    def test_auto_allocate_positive_amount(self):
        self.account.add_schedule(monthly(1, 1000.0, date(2024, 1, 1), "Salary", auto_allocate=True))
        posted = process_schedules_up_to(self.account, date(2024, 2, 1))
        self.assertEqual(len(posted), 8)
        self.assertAlmostEqual(self.account.total_balance, 2000.0)
        self.assertAlmostEqual(self.account.balances()["other"], 1000.0)
        self.assertTrue(all(t.note == "Scheduled: Salary (auto alloc)" for t in posted))

    def test_negative_auto_allocate_posts_directly(self):
        """Expenses are never split, they go to the schedule's category"""
        self.account.add_schedule(every(30, -50.0, date(2024, 1, 1), "Gym", auto_allocate=True))
        self.account.add_schedule(every(30, -20.0, date(2024, 1, 1), "Phone", auto_allocate=True, category="Bills"))
        posted = process_schedules_up_to(self.account, date(2024, 1, 1))

        self.assertEqual(len(posted), 2)
        self.assertEqual((posted[0].category, posted[0].amount), ("Other", -50.0))
        self.assertEqual((posted[1].category, posted[1].amount), ("Bills", -20.0))

    def test_invalid_schedules_are_skipped(self):
        bad_interval = every(0, 10.0, date(2024, 1, 1))
        bad_day = monthly(32, 10.0, date(2024, 1, 1))
        self.account.add_schedule(bad_interval)
        self.account.add_schedule(bad_day)

        with self.assertLogs("finman.schedules", level="WARNING"):
            posted = process_schedules_up_to(self.account, date(2024, 12, 31))

        self.assertEqual(posted, [])
        self.assertEqual(self.account.transactions, ())
        self.assertEqual(bad_interval.next_occurrence, date(2024, 1, 1))
        self.assertEqual(bad_day.next_occurrence, date(2024, 1, 1))

    def test_future_schedule_does_not_fire(self):
        self.account.add_schedule(monthly(1, 10.0, date(2025, 1, 1)))
        self.assertEqual(process_schedules_up_to(self.account, date(2024, 12, 31)), [])
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2025, 1, 1))

    def test_dry_run_leaves_account_untouched(self):
        self.account.add_schedule(monthly(1, 1000.0, date(2024, 1, 1), "Salary", auto_allocate=True))
        self.account.add_schedule(every(10, -5.0, date(2024, 1, 1), "Snacks"))

        preview = process_schedules_up_to(self.account, date(2024, 1, 31), dry_run=True)

        self.assertEqual(len(preview), 4 + 4)
        self.assertAlmostEqual(sum(t.amount for t in preview), 1000.0 - 20.0)
        self.assertEqual(self.account.transactions, ())
        self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 1, 1))
        self.assertEqual(self.account.schedules[1].next_occurrence, date(2024, 1, 1))

    def test_iteration_cap_resumes_next_run(self):
        """Hitting the cap warns, keeps progress and the next run continues"""
        self.account.add_schedule(every(1, 1.0, date(2024, 1, 1)))
        with patch("finman.schedules.MAX_SCHEDULE_ITERATIONS", 3):
            with self.assertLogs("finman.schedules", level="WARNING"):
                first = process_schedules_up_to(self.account, date(2024, 1, 10))
            self.assertEqual(len(first), 3)
            self.assertEqual(self.account.schedules[0].next_occurrence, date(2024, 1, 4))

            with self.assertLogs("finman.schedules", level="WARNING"):
                second = process_schedules_up_to(self.account, date(2024, 1, 10))
            self.assertEqual([t.t_date.day for t in second], [4, 5, 6])

        rest = process_schedules_up_to(self.account, date(2024, 1, 10))
        self.assertEqual([t.t_date.day for t in rest], [7, 8, 9, 10])

    def test_occurrence_that_cannot_advance_is_never_posted(self):
        """Near the end of the calendar a schedule stops instead of posting the same date twice"""
        stuck_interval = every(10, 5.0, date.max - timedelta(days=5))
        stuck_monthly = monthly(15, 5.0, date(9999, 12, 15))
        self.account.add_schedule(stuck_interval)
        self.account.add_schedule(stuck_monthly)

        for _ in range(2):
            with self.assertLogs("finman.schedules", level="WARNING"):
                posted = process_schedules_up_to(self.account, date.max)
            self.assertEqual(posted, [])

        self.assertEqual(self.account.transactions, ())
        self.assertEqual(stuck_interval.next_occurrence, date.max - timedelta(days=5))
        self.assertEqual(stuck_monthly.next_occurrence, date(9999, 12, 15))


class TestInterest(unittest.TestCase):
    def setUp(self):
        self.account = Account()
        self.account.post_transaction(date(2024, 1, 1), 100.0, "Other", "Initial income")

    def test_monthly_interest_compounds(self):
        """Two postings (Feb, Mar), the second on the compounded balance"""
        self.assertEqual(months_between_inclusive(date(2024, 1, 1), date(2024, 1, 1)), 1)
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1), date(2024, 1, 1))

        posted = apply_interest_up_to(self.account, date(2024, 3, 1))

        self.assertEqual([t.t_date for t in posted], [date(2024, 2, 1), date(2024, 3, 1)])
        self.assertAlmostEqual(posted[0].amount, 1.0)
        self.assertAlmostEqual(posted[1].amount, 1.01)
        self.assertEqual(posted[0].note, "Interest (monthly)")
        self.assertAlmostEqual(self.account.total_balance, 102.01)
        self.assertAlmostEqual(self.account.balances()["other"], 102.01)
        self.assertEqual(self.account.interest_rules["other"].last_applied_through, date(2024, 3, 1))

    def test_second_run_posts_nothing(self):
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))
        apply_interest_up_to(self.account, date(2024, 3, 1))
        count = len(self.account.transactions)

        self.assertEqual(apply_interest_up_to(self.account, date(2024, 3, 1)), [])
        self.assertEqual(len(self.account.transactions), count)

    def test_last_applied_never_passes_target(self):
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))
        posted = apply_interest_up_to(self.account, date(2024, 3, 15))
        rule = self.account.interest_rules["other"]
        self.assertEqual(rule.last_applied_through, date(2024, 3, 1))
        self.assertTrue(all(t.t_date <= date(2024, 3, 15) for t in posted))

    def test_annual_rate_is_divided_by_twelve(self):
        self.account.post_transaction(date(2024, 1, 1), 1000.0, "Saving")
        self.account.set_interest("Saving", 12.0, Periodicity.ANNUAL, date(2024, 1, 1))

        posted = apply_interest_up_to(self.account, date(2024, 2, 1))

        self.assertEqual(len(posted), 1)
        self.assertAlmostEqual(posted[0].amount, 10.0)
        self.assertEqual(posted[0].category, "Saving")
        self.assertEqual(posted[0].note, "Interest (annual, converted monthly)")

    def test_only_transactions_up_to_apply_date_count(self):
        self.account.post_transaction(date(2024, 2, 15), 100.0, "Other")
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))

        posted = apply_interest_up_to(self.account, date(2024, 3, 1))

        self.assertAlmostEqual(posted[0].amount, 1.0)
        self.assertAlmostEqual(posted[1].amount, 2.01)

    def test_non_positive_balance_still_advances(self):
        self.account.post_transaction(date(2024, 1, 1), -50.0, "Debt")
        self.account.set_interest("Debt", 5.0, Periodicity.MONTHLY, date(2024, 1, 1))

        posted = apply_interest_up_to(self.account, date(2024, 4, 1))

        self.assertEqual(posted, [])
        self.assertEqual(self.account.interest_rules["debt"].last_applied_through, date(2024, 4, 1))

    def test_rule_starting_after_target_is_skipped(self):
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2025, 1, 1))
        self.assertEqual(apply_interest_up_to(self.account, date(2024, 12, 31)), [])
        self.assertEqual(self.account.interest_rules["other"].last_applied_through, date(2025, 1, 1))

    def test_dry_run_previews_compounding(self):
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))

        preview = apply_interest_up_to(self.account, date(2024, 3, 1), dry_run=True)

        self.assertAlmostEqual(preview[1].amount, 1.01)
        self.assertEqual(len(self.account.transactions), 1)
        self.assertEqual(self.account.interest_rules["other"].last_applied_through, date(2024, 1, 1))

    def test_interest_sees_scheduled_income(self):
        self.account.add_schedule(monthly(1, 100.0, date(2024, 2, 1), "Deposit", category="Other"))
        self.account.set_interest("Other", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))

        process_schedules_up_to(self.account, date(2024, 3, 1))
        posted = apply_interest_up_to(self.account, date(2024, 3, 1))

        self.assertAlmostEqual(posted[0].amount, 2.0)
        self.assertAlmostEqual(posted[1].amount, 3.02)

    def test_preview_matches_real_run(self):
        """A dry run over schedules and interest returns what a real run posts"""
        self.account.add_schedule(monthly(1, 1000.0, date(2024, 1, 1), "Pay", category="Saving"))
        self.account.set_interest("Saving", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))
        target = date(2024, 3, 1)

        preview = process_schedules_up_to(self.account, target, dry_run=True)
        preview += apply_interest_up_to(self.account, target, dry_run=True, pending=preview)
        real = process_schedules_up_to(self.account, target)
        real += apply_interest_up_to(self.account, target)

        self.assertEqual(len(preview), 5)
        self.assertEqual([(t.t_date, t.category, t.note) for t in preview],
                         [(t.t_date, t.category, t.note) for t in real])
        for expected, posted in zip(preview, real):
            self.assertAlmostEqual(expected.amount, posted.amount)
        self.assertAlmostEqual(real[-1].amount, 30.2)


class TestStorage(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmpdir = Path(self._tmp.name)
        self.path = self.tmpdir / "save" / "finance_save.txt"

    def tearDown(self):
        self._tmp.cleanup()

    def build_account(self):
        account = Account()
        account.set_allocation({"Food": 25, "Saving": 25})
        account.post_transaction(date(2024, 1, 1), 100.0, "Other", "Initial | income")
        account.post_transaction(date(2024, 1, 5), -12.5, "Food", "lunch\\dinner\nsecond line")
        account.allocate(date(2024, 1, 10), 200.0, "Bonus")
        account.add_schedule(monthly(31, 50.0, date(2024, 1, 31), "Rent | flat", category="Housing"))
        account.add_schedule(every(14, 300.0, date(2024, 1, 12), "Pay", auto_allocate=True))
        account.set_interest("Saving", 3.0, Periodicity.ANNUAL, date(2024, 1, 1), date(2024, 2, 1))
        return account

    def test_dumps_section_order(self):
        text = dumps(self.build_account(), Settings())
        lines = text.splitlines()
        self.assertTrue(lines[0].startswith("BALANCE "))
        headers = [lines.index(h) for h in ("SETTINGS", "INTERESTS", "ALLOCATIONS", "CATEGORIES", "SCHEDULES", "TXS")]
        self.assertEqual(headers, sorted(headers))
        self.assertIn("AUTO_SAVE|0", lines)
        self.assertIn("LANGUAGE|EN", lines)

    def test_round_trip(self):
        """load(save(state)) gives back the same transactions, schedules, rules and settings"""
        account = self.build_account()
        settings = Settings(auto_save=True, auto_process_on_startup=True, language="VI")

        result = loads(dumps(account, settings))
        loaded = result.account

        self.assertEqual(result.settings, settings)
        self.assertEqual(len(loaded.transactions), len(account.transactions))
        for original, copy in zip(account.transactions, loaded.transactions):
            self.assertEqual((copy.t_date, copy.category, copy.note), (original.t_date, original.category, original.note))
            self.assertAlmostEqual(copy.amount, original.amount)

        self.assertEqual(loaded.schedules, account.schedules)
        self.assertEqual(set(loaded.categories()), set(account.categories()))
        self.assertEqual(loaded.categories(), account.categories())
        for key, pct in account.allocations().items():
            self.assertAlmostEqual(loaded.allocations()[key], pct)
        for key, balance in account.balances().items():
            self.assertAlmostEqual(loaded.balances()[key], balance)
        self.assertAlmostEqual(loaded.total_balance, account.total_balance)
        self.assertEqual(loaded.interest_rules, account.interest_rules)

    def test_save_and_load_file(self):
        account = self.build_account()
        self.assertTrue(save_data(account, Settings(language="DE"), self.path))
        self.assertTrue(self.path.exists())

        result = load_data(self.path)
        self.assertIsNotNone(result)
        self.assertEqual(result.settings.language, "DE")
        self.assertEqual(len(result.account.transactions), len(account.transactions))
        self.assertEqual(os.listdir(self.path.parent), ["finance_save.txt"])

    def test_missing_file_returns_none(self):
        self.assertIsNone(load_data(self.tmpdir / "nope.txt"))

    def test_malformed_transaction_line_is_skipped(self):
        """Only valid TXS lines load and the balance reflects just those"""
        text = "\n".join([
            "BALANCE 999.0",
            "TXS",
            "2024-01-01|100.0|Other|Initial income",
            "2024-01-02|50.0|Other",
            "2024-01-03|-30.0|Food|lunch",
            "2024-13-01|10.0|Other|bad date",
            "2024-01-04|abc|Other|bad amount",
            "2024-01-05|1|Other|too|many",
        ])
        with self.assertLogs("finman", level="WARNING") as logs:
            loaded = loads(text).account

        self.assertEqual(len(loaded.transactions), 2)
        self.assertAlmostEqual(loaded.total_balance, 70.0)
        self.assertAlmostEqual(loaded.balances()["other"], 100.0)
        self.assertAlmostEqual(loaded.balances()["food"], -30.0)
        self.assertTrue(any("Using recomputed" in line for line in logs.output))

    def test_balances_recomputed_from_transactions(self):
        text = "\n".join([
            "BALANCE 100.0",
            "CATEGORIES",
            "Other|999.0",
            "Saving|40.0",
            "TXS",
            "2024-01-01|100.0|Other|income",
        ])
        loaded = loads(text).account
        self.assertAlmostEqual(loaded.balances()["other"], 100.0)
        self.assertAlmostEqual(loaded.balances()["saving"], 40.0)
        self.assertAlmostEqual(loaded.total_balance, 100.0)

    def test_stored_balance_kept_without_transactions(self):
        loaded = loads("BALANCE 250.5\nSETTINGS\nAUTO_SAVE|true\nTXS\n")
        self.assertAlmostEqual(loaded.account.total_balance, 250.5)
        self.assertTrue(loaded.settings.auto_save)

    def test_loaded_category_maps_are_aligned(self):
        text = "\n".join([
            "INTERESTS",
            "Bonds|2.0|0|2024-01-01|2024-01-01",
            "ALLOCATIONS",
            "Fun|10.0",
            "TXS",
            "2024-01-01|5.0|Misc|x",
        ])
        loaded = loads(text).account
        keys = set(loaded.categories())
        self.assertEqual(keys, {"bonds", "fun", "misc"})
        self.assertEqual(keys, set(loaded.balances()))
        self.assertEqual(keys, set(loaded.allocations()))
        self.assertEqual(loaded.interest_rules["bonds"].periodicity, Periodicity.ANNUAL)

    def test_invalid_records_in_other_sections(self):
        text = "\n".join([
            "stray line",
            "INTERESTS",
            "Saving|abc|1|2024-01-01|2024-01-01",
            "Saving|1.0|1|2024-02-30|2024-03-01",
            "SCHEDULES",
            "X|1|10.0|0|2024-01-01||bad kind",
            "E|seven|10.0|0|2024-01-01||bad param",
            "E|0|10.0|0|2024-01-01||never fires",
            "M|15|10.0|1|2024-01-15|Bills|ok",
        ])
        with self.assertLogs("finman.storage", level="WARNING"):
            loaded = loads(text).account

        self.assertEqual(loaded.interest_rules, {})
        self.assertEqual([s.note for s in loaded.schedules], ["never fires", "ok"])
        self.assertEqual(loaded.schedules[1].category, "Bills")
        self.assertTrue(loaded.schedules[1].auto_allocate)

    def test_failed_write_keeps_existing_store(self):
        """A failed replace leaves the old file intact and no temp files behind"""
        self.path.parent.mkdir(parents=True)
        self.path.write_text("ORIGINAL")

        with patch("finman.storage.os.replace", side_effect=OSError("disk full")):
            with self.assertLogs("finman.storage", level="ERROR"):
                ok = save_data(self.build_account(), Settings(), self.path)

        self.assertFalse(ok)
        self.assertEqual(self.path.read_text(), "ORIGINAL")
        self.assertEqual(os.listdir(self.path.parent), ["finance_save.txt"])

    def test_delete_save(self):
        save_data(Account(), Settings(), self.path)
        self.assertTrue(delete_save(self.path))
        self.assertFalse(self.path.exists())
        self.assertFalse(delete_save(self.path))

    def test_round_trip_category_named_like_header(self):
        """A category whose name starts with BALANCE keeps its rule, allocation and balance"""
        account = Account()
        account.set_allocation({"BALANCE Fund": 30})
        account.set_interest("BALANCE Fund", 1.0, Periodicity.MONTHLY, date(2024, 1, 1))
        account.post_transaction(date(2024, 1, 1), 50.0, "BALANCE Fund")

        with self.assertNoLogs("finman", level="WARNING"):
            loaded = loads(dumps(account, Settings())).account

        self.assertIn("balance fund", loaded.interest_rules)
        self.assertAlmostEqual(loaded.interest_rules["balance fund"].rate_percent, 1.0)
        self.assertAlmostEqual(loaded.allocations()["balance fund"], 30.0)
        self.assertAlmostEqual(loaded.balances()["balance fund"], 50.0)
        self.assertEqual(loaded.categories()["balance fund"], "BALANCE Fund")
        self.assertAlmostEqual(loaded.total_balance, 50.0)

    def test_balance_line_inside_section_is_a_record(self):
        loaded = loads("BALANCE 5.0\nCATEGORIES\nBALANCE Fund|5.0\n").account
        self.assertAlmostEqual(loaded.balances()["balance fund"], 5.0)
        self.assertAlmostEqual(loaded.total_balance, 5.0)

    @unittest.skipUnless(os.name == "posix", "file modes are POSIX only")
    def test_save_keeps_file_mode(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("ORIGINAL")
        os.chmod(self.path, 0o644)

        self.assertTrue(save_data(Account(), Settings(), self.path))
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o644)


class TestTranslations(unittest.TestCase):
    def test_resolve(self):
        self.assertEqual(i18n.resolve("VI", "goodbye"), "Tạm biệt!")
        self.assertEqual(i18n.resolve("de", "goodbye"), "Auf Wiedersehen!")
        self.assertEqual(i18n.resolve("XX", "goodbye"), "Goodbye!")
        self.assertEqual(i18n.resolve("EN", "no_such_key"), "no_such_key")

    def test_every_language_has_every_key(self):
        keys = set(i18n.MESSAGES["EN"])
        for code in i18n.available_languages():
            with self.subTest(language=code):
                self.assertEqual(set(i18n.MESSAGES[code]), keys)


class TestCLI(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "finance_save.txt"
        self.cli = FinanceCLI(Account(), Settings(), self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def run_cmd(self, line):
        out = io.StringIO()
        with redirect_stdout(out):
            self.cli.onecmd(line)
        return out.getvalue()

    def test_parse_number(self):
        self.assertEqual(parse_number("0,5%"), 0.5)
        self.assertEqual(parse_number(" 12.5 "), 12.5)
        self.assertEqual(parse_number("-50"), -50.0)
        for bad in ("", "%", "abc", "nan", "inf"):
            with self.subTest(text=bad):
                with self.assertRaises(ValueError):
                    parse_number(bad)

    def test_add_and_undo(self):
        self.run_cmd("add 100 Food 2024-01-01 --note weekly groceries")
        tx = self.cli.account.transactions[0]
        self.assertEqual((tx.t_date, tx.amount, tx.category, tx.note),
                         (date(2024, 1, 1), 100.0, "Food", "weekly groceries"))

        self.run_cmd("undo")
        self.assertEqual(self.cli.account.transactions, ())
        self.assertIn("Nothing to undo", self.run_cmd("undo"))

    def test_invalid_input_is_reported(self):
        output = self.run_cmd("add abc")
        self.assertIn("Invalid input", output)
        self.assertIn("Invalid input", self.run_cmd("process 2024-02-30"))
        self.assertEqual(self.cli.account.transactions, ())

    def test_setalloc(self):
        self.run_cmd("setalloc Food=30 Rent=40")
        alloc = self.cli.account.allocations()
        self.assertEqual((alloc["food"], alloc["rent"], alloc["other"]), (30.0, 40.0, 30.0))
        self.assertIn("Invalid input", self.run_cmd("setalloc Food=90 Rent=40"))

    def test_schedule_and_process(self):
        self.run_cmd('schedule add monthly 31 50 2024-01-31 --category Rent --note flat rent')
        self.assertEqual(len(self.cli.account.schedules), 1)

        preview = self.run_cmd("process 2024-04-30 --preview")
        self.assertIn("2024-02-29", preview)
        self.assertEqual(self.cli.account.transactions, ())

        self.run_cmd("process 2024-04-30")
        self.assertEqual(len(self.cli.account.transactions), 4)

        self.run_cmd("schedule remove 0")
        self.assertEqual(self.cli.account.schedules, ())

    def test_interest_command(self):
        self.run_cmd("add 100 Other 2024-01-01")
        self.run_cmd("interest set Other 1% monthly 2024-01-01")
        self.run_cmd("process 2024-03-01")
        self.assertAlmostEqual(self.cli.account.total_balance, 102.01)
        self.assertIn("No interest rule", self.run_cmd("interest remove Food"))

    def test_settings_and_language(self):
        self.run_cmd("settings autosave on language vi")
        self.assertTrue(self.cli.settings.auto_save)
        self.assertEqual(self.cli.settings.language, "VI")
        self.assertTrue(self.path.exists())
        self.assertIn("Tạm biệt!", self.run_cmd("exit"))

    def test_save_and_load(self):
        self.run_cmd("add 42 Travel 2024-05-01")
        self.run_cmd("save")
        self.cli.account = Account()
        self.run_cmd("load")
        self.assertEqual(len(self.cli.account.transactions), 1)
        self.assertEqual(self.cli.account.transactions[0].category, "Travel")

    def test_reset(self):
        self.run_cmd("add 42 Travel 2024-05-01")
        self.run_cmd("save")
        self.run_cmd("reset yes")
        self.assertFalse(self.path.exists())
        self.assertEqual(self.cli.account.transactions, ())
        self.assertEqual(len(self.cli.account.categories()), 4)

    def test_preview_includes_interest_on_scheduled_income(self):
        self.run_cmd("schedule add monthly 1 1000 2024-01-01 --category Saving --note pay")
        self.run_cmd("interest set Saving 1% monthly 2024-01-01")

        preview = self.run_cmd("process 2024-03-01 --preview")
        self.assertIn("30.20", preview)
        self.assertEqual(self.cli.account.transactions, ())

        self.run_cmd("process 2024-03-01")
        self.assertEqual(len(self.cli.account.transactions), 5)
        self.assertAlmostEqual(self.cli.account.transactions[-1].amount, 30.2)

    def test_process_that_only_moves_interest_anchor(self):
        """Advancing an interest rule without posting is saved and can be undone"""
        self.run_cmd("add -50 Debt 2024-01-01")
        self.run_cmd("interest set Debt 5% monthly 2024-01-01")
        self.cli.settings = Settings(auto_save=True)

        self.run_cmd("process 2024-04-01")
        self.assertEqual(len(self.cli.account.transactions), 1)
        self.assertEqual(self.cli.account.interest_rules["debt"].last_applied_through, date(2024, 4, 1))
        self.assertTrue(self.path.exists())
        stored = load_data(self.path).account
        self.assertEqual(stored.interest_rules["debt"].last_applied_through, date(2024, 4, 1))

        self.run_cmd("undo")
        self.assertEqual(self.cli.account.interest_rules["debt"].last_applied_through, date(2024, 1, 1))
        self.assertEqual(len(self.cli.account.transactions), 1)

    def test_process_without_changes_adds_no_undo_step(self):
        self.run_cmd("add 10 Food 2024-01-01")
        self.run_cmd("process 2024-04-01")
        self.run_cmd("undo")
        self.assertEqual(self.cli.account.transactions, ())

    def test_listings_are_translated(self):
        self.run_cmd("settings language de")
        self.run_cmd("schedule add every 7 25 2024-01-01 --auto --note taschengeld")
        self.run_cmd("interest set Saving 2 annual 2024-01-01")

        schedules = self.run_cmd("schedule list")
        self.assertIn("alle 7 Tage", schedules)
        self.assertIn("nächste 2024-01-01", schedules)
        self.assertIn("automatisch verteilt", schedules)

        rules = self.run_cmd("interest list")
        self.assertIn("jährlich", rules)
        self.assertIn("angewendet bis 2024-01-01", rules)


class TestStartup(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "finance_save.txt"

    def tearDown(self):
        self._tmp.cleanup()

    def test_fresh_account_when_store_missing(self):
        with redirect_stdout(io.StringIO()):
            account, settings = startup(self.path)
        self.assertEqual(settings, Settings())
        self.assertEqual(len(account.categories()), 4)

    def test_auto_process_on_startup(self):
        account = Account()
        account.add_schedule(monthly(1, 10.0, date(2024, 1, 1)))
        save_data(account, Settings(auto_process_on_startup=True), self.path)

        with redirect_stdout(io.StringIO()):
            loaded, settings = startup(self.path, as_of=date(2024, 3, 1))

        self.assertTrue(settings.auto_process_on_startup)
        self.assertEqual(len(loaded.transactions), 3)
        self.assertEqual(loaded.schedules[0].next_occurrence, date(2024, 4, 1))


if __name__ == "__main__":
    unittest.main()
