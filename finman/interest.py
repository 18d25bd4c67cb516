from __future__ import annotations
from datetime import date
from typing import Iterable

from finman.dates import add_months, format_date, months_between_inclusive
from finman.logging_setup import get_logger
from finman.logic import Account
from finman.models import CategoryKey, InterestRule, Periodicity, Transaction, category_key


logger = get_logger("finman.interest")

MAX_INTEREST_MONTHS = 1200
MIN_POSTED_INTEREST = 1e-12

# (category key, date, amount) of a real or simulated posting
WorkingEntry = tuple[CategoryKey, date, float]


def interest_note(rule: InterestRule) -> str:
    if rule.periodicity is Periodicity.MONTHLY:
        return "Interest (monthly)"
    return "Interest (annual, converted monthly)"


def category_balance_on(working: list[WorkingEntry], key: CategoryKey, on: date) -> float:
    return sum(amount for entry_key, when, amount in working if entry_key == key and when <= on)


def apply_rule(
        account: Account,
        rule: InterestRule,
        target: date,
        working: list[WorkingEntry],
        dry_run: bool = False,
) -> list[Transaction]:
    """Run the month-by-month simulation for one rule.

    ``working`` is shared across rules of the same run. Every posting is
    appended to it so later months compound on earlier interest.
    """
    if rule.start_date > target:
        return []

    first_apply = add_months(max(rule.last_applied_through, rule.start_date), 1)
    months = months_between_inclusive(first_apply, target)
    if months == 0:
        return []
    if months > MAX_INTEREST_MONTHS:
        logger.warning(
            "Interest for %s has %d months due; applying %d now, the rest on the next run",
            account.display_name(rule.category_key), months, MAX_INTEREST_MONTHS
        )
        months = MAX_INTEREST_MONTHS

    monthly_rate = rule.monthly_rate
    display = account.display_name(rule.category_key)
    note = interest_note(rule)
    posted: list[Transaction] = []

    for m in range(months):
        apply_date = add_months(first_apply, m)
        balance = category_balance_on(working, rule.category_key, apply_date)
        if balance <= 0.0:
            logger.debug("No positive balance for interest on %s at %s (bal=%.2f)",
                         display, format_date(apply_date), balance)
            continue

        interest = balance * monthly_rate
        if abs(interest) <= MIN_POSTED_INTEREST:
            continue

        if dry_run:
            tx = Transaction(apply_date, interest, display, note)
        else:
            tx = account.post_transaction(apply_date, interest, display, note)
            logger.info("Applied interest for %s date=%s interest=%.6f base=%.2f",
                        display, format_date(apply_date), interest, balance)
        working.append((rule.category_key, apply_date, interest))
        posted.append(tx)

    if not dry_run:
        rule.last_applied_through = add_months(first_apply, months - 1)
        logger.debug("Interest for %s applied through %s", display, format_date(rule.last_applied_through))
    return posted


def apply_interest_up_to(
        account: Account,
        target: date,
        dry_run: bool = False,
        pending: Iterable[Transaction] = (),
) -> list[Transaction]:
    """Apply every interest rule up to ``target``.

    ``pending`` holds would-be transactions from a schedule dry run, so a
    preview compounds on them the same way a real run would.
    """
    rules = account.interest_rules
    if not rules:
        return []

    working = [(category_key(t.category), t.t_date, t.amount) for t in (*account.transactions, *pending)]
    posted: list[Transaction] = []
    for rule in rules.values():
        posted.extend(apply_rule(account, rule, target, working, dry_run))
    if not dry_run:
        logger.info("Finished applying interest up to %s (%d postings)", format_date(target), len(posted))
    return posted
