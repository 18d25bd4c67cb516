from __future__ import annotations
import math
import os
import stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from finman.codec import join_escaped, split_escaped
from finman.dates import format_date, parse_date
from finman.logging_setup import get_logger
from finman.logic import Account
from finman.models import (
    CategoryKey, InterestRule, Periodicity, Schedule, ScheduleKind, Settings, Transaction,
    category_key, resolve_display_name
)


logger = get_logger("finman.storage")

SAVE_FILE = Path(os.getenv("FINMAN_SAVE_FILE", "data/save/finance_save.txt"))
LOG_FILE = Path(os.getenv("FINMAN_LOG_FILE", "data/save/finance_full_log.txt"))

SECTIONS = ("SETTINGS", "INTERESTS", "ALLOCATIONS", "CATEGORIES", "SCHEDULES", "TXS")
FIELD_COUNTS = {
    "SETTINGS": 2,
    "INTERESTS": 5,
    "ALLOCATIONS": 2,
    "CATEGORIES": 2,
    "SCHEDULES": 7,
    "TXS": 4,
}


@dataclass
class LoadResult:
    account: Account
    settings: Settings


def _num(value: float) -> str:
    return f"{value:.10f}"


def _flag(value: bool) -> str:
    return "1" if value else "0"


def _parse_flag(text: str) -> bool:
    return text in ("1", "true")


def _parse_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"not a finite number: {text!r}")
    return value


def dumps(account: Account, settings: Settings) -> str:
    lines = [f"BALANCE {_num(account.total_balance)}", "SETTINGS"]
    lines.append(join_escaped(["AUTO_SAVE", _flag(settings.auto_save)]))
    lines.append(join_escaped(["AUTO_PROCESS_STARTUP", _flag(settings.auto_process_on_startup)]))
    lines.append(join_escaped(["LANGUAGE", settings.language]))

    lines.append("INTERESTS")
    for key, rule in account.interest_rules.items():
        lines.append(join_escaped([
            account.display_name(key),
            _num(rule.rate_percent),
            _flag(rule.periodicity is Periodicity.MONTHLY),
            format_date(rule.start_date),
            format_date(rule.last_applied_through),
        ]))

    lines.append("ALLOCATIONS")
    for key, pct in account.allocations().items():
        lines.append(join_escaped([account.display_name(key), _num(pct)]))

    lines.append("CATEGORIES")
    for key, balance in account.balances().items():
        lines.append(join_escaped([account.display_name(key), _num(balance)]))

    lines.append("SCHEDULES")
    for s in account.schedules:
        lines.append(join_escaped([
            s.kind.value,
            s.param,
            _num(s.amount),
            _flag(s.auto_allocate),
            format_date(s.next_occurrence),
            s.category or "",
            s.note,
        ]))

    lines.append("TXS")
    for t in account.transactions:
        lines.append(join_escaped([format_date(t.t_date), _num(t.amount), t.category, t.note]))

    return "\n".join(lines) + "\n"


class _Loader:
    """Collects records section by section, skipping anything malformed."""

    def __init__(self):
        self.settings = {}
        self.stored_total: Optional[float] = None
        self.transactions: list[Transaction] = []
        self.schedules: list[Schedule] = []
        self.interest_rules: dict[CategoryKey, InterestRule] = {}
        self.display_names: dict[CategoryKey, str] = {}
        self.balances: dict[CategoryKey, float] = {}
        self.allocations: dict[CategoryKey, float] = {}

    def _remember(self, raw_name: str) -> CategoryKey:
        key = category_key(raw_name)
        self.display_names.setdefault(key, resolve_display_name(raw_name))
        return key

    def feed(self, section: Optional[str], line: str, lineno: int) -> None:
        if section is None:
            logger.warning("Line %d: record outside any section, skipping: %r", lineno, line)
            return

        parts = split_escaped(line)
        if len(parts) != FIELD_COUNTS[section]:
            logger.warning("Line %d: invalid %s line (expected %d fields, got %d), skipping: %r",
                           lineno, section, FIELD_COUNTS[section], len(parts), line)
            return

        try:
            getattr(self, "_" + section.lower())(parts)
        except ValueError as e:
            logger.warning("Line %d: invalid %s line (%s), skipping: %r", lineno, section, e, line)

    def _settings(self, parts):
        key, value = parts
        if key == "AUTO_SAVE":
            self.settings["auto_save"] = _parse_flag(value)
        elif key == "AUTO_PROCESS_STARTUP":
            self.settings["auto_process_on_startup"] = _parse_flag(value)
        elif key == "LANGUAGE":
            self.settings["language"] = value or "EN"
        else:
            logger.debug("Ignoring unknown setting %r", key)

    def _interests(self, parts):
        name, rate, monthly, start, last = parts
        rule_rate = _parse_float(rate)
        start_date = parse_date(start)
        last_applied = parse_date(last)
        key = self._remember(name)
        self.interest_rules[key] = InterestRule(
            category_key=key,
            rate_percent=rule_rate,
            periodicity=Periodicity.MONTHLY if _parse_flag(monthly) else Periodicity.ANNUAL,
            start_date=start_date,
            last_applied_through=last_applied,
        )

    def _allocations(self, parts):
        name, pct = parts
        value = _parse_float(pct)
        self.allocations[self._remember(name)] = value

    def _categories(self, parts):
        name, balance = parts
        value = _parse_float(balance)
        self.balances[self._remember(name)] = value

    def _schedules(self, parts):
        kind, param, amount, auto, next_date, category, note = parts
        schedule = Schedule(
            kind=ScheduleKind(kind),
            param=int(param),
            amount=_parse_float(amount),
            next_occurrence=parse_date(next_date),
            note=note,
            auto_allocate=_parse_flag(auto),
            category=category or None,
        )
        if not schedule.is_valid():
            logger.warning("Loaded schedule '%s' has an invalid parameter (%s); it will never fire",
                           note, schedule.describe())
        if schedule.category:
            self._remember(schedule.category)
        self.schedules.append(schedule)

    def _txs(self, parts):
        t_date, amount, category, note = parts
        tx = Transaction(parse_date(t_date), _parse_float(amount), resolve_display_name(category), note)
        self._remember(category)
        self.transactions.append(tx)

    def build(self) -> LoadResult:
        account = Account(with_defaults=False)
        account.rebuild(
            transactions=self.transactions,
            schedules=self.schedules,
            interest_rules=self.interest_rules,
            display_names=self.display_names,
            stored_balances=self.balances,
            allocations=self.allocations,
            stored_total=self.stored_total,
        )
        return LoadResult(account=account, settings=Settings(**self.settings))


def loads(text: str) -> LoadResult:
    """Parse a store document. Malformed lines are logged and skipped."""
    loader = _Loader()
    section: Optional[str] = None

    for lineno, line in enumerate(text.split("\n"), start=1):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        if line in SECTIONS:
            section = line
            continue
        # the BALANCE header only appears before the first section
        if section is None and line.startswith("BALANCE "):
            try:
                loader.stored_total = _parse_float(line[len("BALANCE "):].strip())
            except ValueError:
                logger.warning("Line %d: invalid BALANCE value, ignoring: %r", lineno, line)
            continue
        loader.feed(section, line, lineno)

    return loader.build()


def save_data(account: Account, settings: Settings, path: Path | str = SAVE_FILE) -> bool:
    """Write the store atomically: temp file in the same directory, then os.replace."""
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=path.parent)
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(dumps(account, settings))
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            os.chmod(tmp_name, stat.S_IMODE(path.stat().st_mode))
        os.replace(tmp_name, path)
    except OSError as e:
        logger.error("Error saving data to %s: %s", path, e)
        if tmp_name is not None and os.path.exists(tmp_name):
            try:
                os.remove(tmp_name)
            except OSError as cleanup_error:
                logger.warning("Could not remove temporary file %s: %s", tmp_name, cleanup_error)
        return False

    logger.info("Saved %d transactions to %s", len(account.transactions), path)
    return True


def load_data(path: Path | str = SAVE_FILE) -> Optional[LoadResult]:
    """Load the store at ``path``; None when it is missing or unreadable."""
    path = Path(path)
    if not path.exists():
        logger.info("Save file %s not found", path)
        return None

    try:
        with open(path, encoding="utf-8", newline="") as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Error reading %s: %s", path, e)
        return None

    result = loads(text)
    logger.info("Loaded %d transactions, %d categories from %s",
                len(result.account.transactions), len(result.account.categories()), path)
    return result


def delete_save(path: Path | str = SAVE_FILE) -> bool:
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.error("Error deleting %s: %s", path, e)
        return False
    logger.info("Deleted save file %s", path)
    return True
