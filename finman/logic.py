from __future__ import annotations
import math
from dataclasses import replace
from datetime import date
from typing import Optional, Mapping

from finman.logging_setup import get_logger
from finman.models import (
    CategoryKey, FALLBACK_KEY, InterestRule, Periodicity, Schedule, Snapshot, Transaction,
    category_key, normalize_key, resolve_display_name
)


logger = get_logger("finman.logic")

FALLBACK_CATEGORY = "Other"
DEFAULT_ALLOCATIONS = {
    "Emergency": 20.0,
    "Entertainment": 10.0,
    "Saving": 20.0,
    FALLBACK_CATEGORY: 50.0,
}
ZERO_PCT_EPSILON = 1e-6
BALANCE_TOLERANCE = 0.01


class Account:
    """In-memory ledger: transaction log, categories, schedules and interest rules.

    Categories are tracked in three dicts keyed by the normalized
    CategoryKey (display name, running balance, allocation percent). Every
    key present in one of them is present in all three.
    """

    def __init__(self, with_defaults: bool = True):
        self.total_balance = 0.0
        self._transactions: list[Transaction] = []
        self._schedules: list[Schedule] = []
        self._interest_rules: dict[CategoryKey, InterestRule] = {}
        self._display_names: dict[CategoryKey, str] = {}
        self._balances: dict[CategoryKey, float] = {}
        self._allocations: dict[CategoryKey, float] = {}

        if with_defaults:
            for name, pct in DEFAULT_ALLOCATIONS.items():
                key = self.find_or_create_category(name)
                self._allocations[key] = pct

    # ===== READ-ONLY VIEWS =====
    @property
    def transactions(self) -> tuple[Transaction, ...]:
        return tuple(self._transactions)

    @property
    def schedules(self) -> tuple[Schedule, ...]:
        return tuple(self._schedules)

    @property
    def interest_rules(self) -> dict[CategoryKey, InterestRule]:
        return dict(self._interest_rules)

    def balances(self) -> dict[CategoryKey, float]:
        return dict(self._balances)

    def allocations(self) -> dict[CategoryKey, float]:
        return dict(self._allocations)

    def categories(self) -> dict[CategoryKey, str]:
        return dict(self._display_names)

    def display_name(self, key: CategoryKey) -> str:
        return self._display_names.get(key) or key

    # ===== CATEGORIES =====
    def find_or_create_category(self, name: Optional[str]) -> CategoryKey:
        display = resolve_display_name(name)
        key = normalize_key(display)
        self._display_names.setdefault(key, display)
        self._balances.setdefault(key, 0.0)
        self._allocations.setdefault(key, 0.0)
        return key

    def set_allocation(self, percents: Mapping[str, float]) -> float:
        """Replace the allocation table; the fallback category absorbs the remainder.

        Categories left out of ``percents`` keep existing with 0%. Returns
        the percentage assigned to the fallback category.
        """
        for name, pct in percents.items():
            if not 0.0 <= pct <= 100.0:
                raise ValueError(f"Allocation for {name!r} must be between 0 and 100")
        total = sum(pct for name, pct in percents.items() if category_key(name) != FALLBACK_KEY)
        if total > 100.0 + ZERO_PCT_EPSILON:
            raise ValueError(f"Allocations sum to {total:.2f}%, which exceeds 100%")

        new_alloc: dict[CategoryKey, float] = {}
        for name, pct in percents.items():
            key = self.find_or_create_category(name)
            if key != FALLBACK_KEY:
                new_alloc[key] = new_alloc.get(key, 0.0) + pct

        fallback = self.find_or_create_category(FALLBACK_CATEGORY)
        remainder = max(0.0, 100.0 - total)
        for key in self._allocations:
            self._allocations[key] = new_alloc.get(key, 0.0)
        self._allocations[fallback] = remainder
        logger.info("Allocations updated, %s gets %.2f%%", self.display_name(fallback), remainder)
        return remainder

    # ===== TRANSACTIONS =====
    def post_transaction(self, t_date: date, amount: float, category: Optional[str], note: str = "") -> Transaction:
        key = self.find_or_create_category(category)
        transaction = Transaction(
            t_date=t_date,
            amount=amount,
            category=self._display_names[key],
            note=note,
        )
        self._transactions.append(transaction)
        self._balances[key] += amount
        self.total_balance += amount
        logger.debug("Posted %s %.2f to %s (%s)", t_date, amount, transaction.category, note)
        return transaction

    def allocation_plan(self, amount: float) -> list[tuple[CategoryKey, float]]:
        """Split ``amount`` by allocation percent without posting anything.

        Returns an empty list when the percentages sum to zero, which means
        the whole amount goes to the fallback category.
        """
        total_pct = sum(self._allocations.values())
        if total_pct <= ZERO_PCT_EPSILON:
            return []
        return [(key, amount * (pct / total_pct)) for key, pct in self._allocations.items()]

    def allocate(self, t_date: date, amount: float, note: str = "") -> list[Transaction]:
        plan = self.allocation_plan(amount)
        if not plan:
            return [self.post_transaction(t_date, amount, FALLBACK_CATEGORY, note + " (auto alloc fallback)")]

        return [
            self.post_transaction(t_date, share, self._display_names[key], note + " (auto alloc)")
            for key, share in plan
        ]

    # ===== SCHEDULES =====
    def add_schedule(self, schedule: Schedule) -> None:
        if not schedule.is_valid():
            logger.warning("Added schedule with invalid parameter (%s); it will never fire", schedule.describe())
        if schedule.category:
            self.find_or_create_category(schedule.category)
        self._schedules.append(schedule)

    def remove_schedule(self, index: int) -> Schedule:
        if not 0 <= index < len(self._schedules):
            raise ValueError(f"No schedule at index {index}")
        return self._schedules.pop(index)

    # ===== INTEREST =====
    def set_interest(
            self,
            category: str,
            rate_percent: float,
            periodicity: Periodicity,
            start_date: date,
            last_applied_through: Optional[date] = None,
    ) -> InterestRule:
        if not math.isfinite(rate_percent):
            raise ValueError("Interest rate must be a finite number")
        key = self.find_or_create_category(category)
        rule = InterestRule(
            category_key=key,
            rate_percent=rate_percent,
            periodicity=periodicity,
            start_date=start_date,
            last_applied_through=last_applied_through or start_date,
        )
        self._interest_rules[key] = rule
        return rule

    def remove_interest(self, category: str) -> bool:
        return self._interest_rules.pop(category_key(category), None) is not None

    # ===== SNAPSHOT / UNDO =====
    def snapshot(self) -> Snapshot:
        return Snapshot(
            log_length=len(self._transactions),
            total_balance=self.total_balance,
            balances=dict(self._balances),
            display_names=dict(self._display_names),
            allocations=dict(self._allocations),
            schedules=tuple(replace(s) for s in self._schedules),
            interest_rules={k: replace(r) for k, r in self._interest_rules.items()},
        )

    def restore(self, snapshot: Snapshot) -> None:
        """Roll back to ``snapshot``, dropping every transaction posted after it."""
        del self._transactions[snapshot.log_length:]
        self.total_balance = snapshot.total_balance
        self._balances = dict(snapshot.balances)
        self._display_names = dict(snapshot.display_names)
        self._allocations = dict(snapshot.allocations)
        self._schedules = [replace(s) for s in snapshot.schedules]
        self._interest_rules = {k: replace(r) for k, r in snapshot.interest_rules.items()}
        logger.info("Restored snapshot, transaction log truncated to %d entries", snapshot.log_length)

    # ===== LOADING =====
    def rebuild(
            self,
            transactions: list[Transaction],
            schedules: list[Schedule],
            interest_rules: dict[CategoryKey, InterestRule],
            display_names: dict[CategoryKey, str],
            stored_balances: dict[CategoryKey, float],
            allocations: dict[CategoryKey, float],
            stored_total: Optional[float],
    ) -> None:
        """Install loaded records, recomputing every derived balance from the log."""
        self._transactions = list(transactions)
        self._schedules = list(schedules)
        self._interest_rules = dict(interest_rules)
        self._display_names = dict(display_names)
        self._allocations = dict(allocations)

        recomputed: dict[CategoryKey, float] = {}
        for t in self._transactions:
            key = category_key(t.category)
            recomputed[key] = recomputed.get(key, 0.0) + t.amount
            self._display_names.setdefault(key, resolve_display_name(t.category))
        for key, stored in stored_balances.items():
            recomputed.setdefault(key, stored)
        self._balances = recomputed

        for key in list(self._display_names) + list(self._balances) + list(self._allocations) + list(self._interest_rules):
            self._display_names.setdefault(key, key)
            self._balances.setdefault(key, 0.0)
            self._allocations.setdefault(key, 0.0)

        computed_total = sum(t.amount for t in self._transactions)
        if not self._transactions and stored_total is not None:
            self.total_balance = stored_total
            return
        if stored_total is not None and abs(stored_total - computed_total) > BALANCE_TOLERANCE:
            logger.warning(
                "Stored BALANCE (%.2f) differs from recomputed (%.2f). Using recomputed.",
                stored_total, computed_total
            )
        self.total_balance = computed_total
