from __future__ import annotations
from datetime import date

from finman.dates import add_days, format_date, months_between_inclusive, next_monthly_on
from finman.logging_setup import get_logger
from finman.logic import Account, FALLBACK_CATEGORY
from finman.models import Schedule, ScheduleKind, Transaction


logger = get_logger("finman.schedules")

MAX_SCHEDULE_ITERATIONS = 50_000
ITERATION_MARGIN = 5


def advance(schedule: Schedule, current: date) -> date:
    if schedule.kind is ScheduleKind.EVERY_INTERVAL:
        return add_days(current, schedule.param)
    return next_monthly_on(current, schedule.param)


def iteration_cap(schedule: Schedule, target: date) -> int:
    """Conservative upper bound on the occurrences due between next_occurrence and target."""
    if schedule.kind is ScheduleKind.EVERY_INTERVAL:
        span_days = max(0, (target - schedule.next_occurrence).days)
        expected = span_days // schedule.param
    else:
        expected = months_between_inclusive(schedule.next_occurrence, target)
    return min(expected + ITERATION_MARGIN, MAX_SCHEDULE_ITERATIONS)


def _preview_occurrence(account: Account, schedule: Schedule, when: date, note: str) -> list[Transaction]:
    if schedule.auto_allocate and schedule.amount > 0:
        plan = account.allocation_plan(schedule.amount)
        if not plan:
            return [Transaction(when, schedule.amount, FALLBACK_CATEGORY, note + " (auto alloc fallback)")]
        return [Transaction(when, share, account.display_name(key), note + " (auto alloc)") for key, share in plan]
    return [Transaction(when, schedule.amount, schedule.category or FALLBACK_CATEGORY, note)]


def _fire(account: Account, schedule: Schedule, when: date, note: str) -> list[Transaction]:
    # auto-allocation is only defined for positive amounts
    if schedule.auto_allocate and schedule.amount > 0:
        posted = account.allocate(when, schedule.amount, note)
        logger.info("Applied scheduled auto-alloc: date=%s amount=%.2f note=%s",
                    format_date(when), schedule.amount, schedule.note)
        return posted

    posted = account.post_transaction(when, schedule.amount, schedule.category or FALLBACK_CATEGORY, note)
    logger.info("Applied scheduled tx: date=%s amount=%.2f category=%s note=%s",
                format_date(when), schedule.amount, posted.category, schedule.note)
    return [posted]


def process_schedule(account: Account, schedule: Schedule, target: date, dry_run: bool = False) -> list[Transaction]:
    """Fire one schedule for every occurrence on or before ``target``.

    With ``dry_run`` the account and the schedule are left untouched and the
    would-be transactions are returned instead.
    """
    if not schedule.is_valid():
        logger.warning("Skipping schedule with invalid parameter (%s, param=%d)",
                       schedule.kind.name, schedule.param)
        return []

    cap = iteration_cap(schedule, target)
    note = f"Scheduled: {schedule.note}"
    current = schedule.next_occurrence
    results: list[Transaction] = []
    iterations = 0

    while current <= target and iterations < cap:
        # an occurrence is only posted when next_occurrence can move past it
        try:
            following = advance(schedule, current)
        except (ValueError, OverflowError):
            following = current
        if following <= current:
            logger.warning("Schedule '%s' cannot advance past %s; occurrence not posted",
                           schedule.note, format_date(current))
            break

        if dry_run:
            results.extend(_preview_occurrence(account, schedule, current, note))
        else:
            results.extend(_fire(account, schedule, current, note))
        iterations += 1
        current = following
        if not dry_run:
            schedule.next_occurrence = current
    else:
        if current <= target:
            logger.warning(
                "Schedule '%s' reached its iteration cap (%d) with occurrences still due; "
                "the rest will be processed on the next run", schedule.note, cap
            )

    return results


def process_schedules_up_to(account: Account, target: date, dry_run: bool = False) -> list[Transaction]:
    results: list[Transaction] = []
    for schedule in account.schedules:
        results.extend(process_schedule(account, schedule, target, dry_run))
    if not dry_run:
        logger.info("Finished processing schedules up to %s (%d transactions)", format_date(target), len(results))
    return results
