import cmd
import math
import shlex
from dataclasses import replace
from pathlib import Path
from typing import Optional

from finman import i18n
from finman.dates import format_date, parse_date, today
from finman.interest import apply_interest_up_to
from finman.logging_setup import get_logger
from finman.logic import Account, FALLBACK_CATEGORY
from finman.models import Periodicity, Schedule, ScheduleKind, Settings, Snapshot
from finman.schedules import process_schedules_up_to
from finman.storage import SAVE_FILE, delete_save, load_data, save_data


logger = get_logger("finman.cli")

MAX_UNDO = 20
RECENT_COUNT = 10


def parse_number(text: str) -> float:
    """Parse amounts and rates: accepts ``0,5``, ``0.5%`` and surrounding spaces."""
    cleaned = "".join(text.split()).replace(",", ".")
    if cleaned.endswith("%"):
        cleaned = cleaned[:-1]
    if not cleaned:
        raise ValueError("Missing number")
    try:
        value = float(cleaned)
    except ValueError:
        raise ValueError(f"Not a number: {text!r}")
    if not math.isfinite(value):
        raise ValueError(f"Not a finite number: {text!r}")
    return value


class FinanceCLI(cmd.Cmd):
    prompt = "(finance) "

    def __init__(self, account: Account, settings: Settings, save_path: Path = SAVE_FILE):
        super().__init__()
        self.account = account
        self.settings = settings
        self.save_path = Path(save_path)
        self._undo: list[Snapshot] = []
        self.intro = self._t("welcome")

    def _t(self, key: str, **kwargs) -> str:
        text = i18n.resolve(self.settings.language, key)
        return text.format(**kwargs) if kwargs else text

    def _checkpoint(self, snapshot: Optional[Snapshot] = None):
        self._undo.append(snapshot or self.account.snapshot())
        del self._undo[:-MAX_UNDO]

    def _after_change(self):
        if self.settings.auto_save:
            self._save()

    def _save(self) -> bool:
        if save_data(self.account, self.settings, self.save_path):
            print(self._t("saved", path=self.save_path))
            return True
        print(self._t("save_failed", path=self.save_path))
        return False

    # ===== CORE COMMANDS =====
    def do_add(self, arg):
        """Add a transaction: add <amount> [category] [YYYY-MM-DD] [--note text]
        Negative amounts are expenses."""
        try:
            args = self._parse_entry_args(arg, allow_category=True)
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return

        self._checkpoint()
        tx = self.account.post_transaction(args['date'], args['amount'], args['category'], args['note'])
        print(self._t("added_tx", amount=tx.amount, category=tx.category))
        self._after_change()

    def do_alloc(self, arg):
        """Split an amount across categories by allocation percent: alloc <amount> [YYYY-MM-DD] [--note text]"""
        try:
            args = self._parse_entry_args(arg, allow_category=False)
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return

        self._checkpoint()
        posted = self.account.allocate(args['date'], args['amount'], args['note'])
        print(self._t("allocated", amount=args['amount'], count=len(posted)))
        self._after_change()

    def do_setalloc(self, arg):
        """Set allocation percents: setalloc <category>=<pct> ... (Other gets the remainder)"""
        try:
            percents = {}
            for item in shlex.split(arg):
                name, sep, pct = item.rpartition("=")
                if not sep or not name:
                    raise ValueError(f"Expected <category>=<pct>, got {item!r}")
                percents[name] = parse_number(pct)
            if not percents:
                raise ValueError("No allocations given")
            snapshot = self.account.snapshot()
            remainder = self.account.set_allocation(percents)
            self._checkpoint(snapshot)
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return

        print(self._t("alloc_updated", category=FALLBACK_CATEGORY, pct=remainder))
        self._after_change()

    def do_schedule(self, arg):
        """Manage recurring transactions:
        schedule add every <days>|monthly <day> <amount> <YYYY-MM-DD> [--auto] [--category NAME] [--note text]
        schedule list
        schedule remove <index>"""
        try:
            args = shlex.split(arg)
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return
        if not args:
            self.do_help("schedule")
            return

        try:
            if args[0] == "add":
                schedule = self._parse_schedule_args(args[1:])
                self._checkpoint()
                self.account.add_schedule(schedule)
                print(self._t("schedule_added", desc=self._describe(schedule)))
                self._after_change()
            elif args[0] == "list":
                self._print_schedules()
            elif args[0] == "remove":
                if len(args) < 2:
                    raise ValueError("Missing schedule index")
                index = int(args[1])
                snapshot = self.account.snapshot()
                self.account.remove_schedule(index)
                self._checkpoint(snapshot)
                print(self._t("schedule_removed", index=index))
                self._after_change()
            else:
                self.do_help("schedule")
        except ValueError as e:
            print(self._t("invalid_input", error=e))

    def do_interest(self, arg):
        """Manage interest rules:
        interest set <category> <rate%> <monthly|annual> [start YYYY-MM-DD]
        interest list
        interest remove <category>"""
        try:
            args = shlex.split(arg)
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return
        if not args:
            self.do_help("interest")
            return

        try:
            if args[0] == "set":
                if len(args) < 4:
                    raise ValueError("Usage: interest set <category> <rate%> <monthly|annual> [start]")
                rate = parse_number(args[2])
                periodicity = Periodicity(args[3].lower())
                start = parse_date(args[4]) if len(args) > 4 else today()
                self._checkpoint()
                rule = self.account.set_interest(args[1], rate, periodicity, start)
                print(self._t("interest_set", category=self.account.display_name(rule.category_key),
                              rate=rate, periodicity=self._periodicity(periodicity)))
                self._after_change()
            elif args[0] == "list":
                self._print_interest()
            elif args[0] == "remove":
                if len(args) < 2:
                    raise ValueError("Missing category")
                snapshot = self.account.snapshot()
                if self.account.remove_interest(args[1]):
                    self._checkpoint(snapshot)
                    print(self._t("interest_removed", category=args[1]))
                    self._after_change()
                else:
                    print(self._t("interest_not_found", category=args[1]))
            else:
                self.do_help("interest")
        except ValueError as e:
            print(self._t("invalid_input", error=e))

    def do_process(self, arg):
        """Post due scheduled transactions and interest: process [YYYY-MM-DD] [--preview]"""
        args = arg.split()
        preview = "--preview" in args
        args = [a for a in args if a != "--preview"]
        try:
            target = parse_date(args[0]) if args else today()
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return

        if preview:
            pending = process_schedules_up_to(self.account, target, dry_run=True)
            pending += apply_interest_up_to(self.account, target, dry_run=True, pending=pending)
            print(self._t("preview_header", date=format_date(target)))
            if not pending:
                print(f"  {self._t('nothing_due')}")
            for t in pending:
                print(f"  {format_date(t.t_date)} | {t.amount:>10.2f} | {t.category} | {t.note}")
            return

        before = self.account.snapshot()
        scheduled = process_schedules_up_to(self.account, target)
        interest = apply_interest_up_to(self.account, target)
        print(self._t("processed", date=format_date(target), scheduled=len(scheduled), interest=len(interest)))
        # interest anchors can move even when nothing was posted
        if self.account.snapshot() != before:
            self._checkpoint(before)
            self._after_change()

    def do_summary(self, arg):
        """Show balances, allocations, interest rules, schedules and recent transactions"""
        acc = self.account
        print(self._t("summary_title"))
        print(self._t("total_balance", amount=acc.total_balance))

        print(f"\n{self._t('category_balances')}")
        for key, balance in acc.balances().items():
            print(f"  - {acc.display_name(key)}: {balance:,.2f}")

        print(f"\n{self._t('allocations')}")
        for key, pct in acc.allocations().items():
            print(f"  - {acc.display_name(key)}: {pct:g}%")

        print()
        self._print_interest()
        print()
        self._print_schedules()

        recent = acc.transactions[-RECENT_COUNT:]
        print(f"\n{self._t('recent_transactions', count=RECENT_COUNT)}")
        for t in reversed(recent):
            print(f"  {format_date(t.t_date)} | {t.amount:>10.2f} | {t.category} | {t.note}")

    # ===== DATA MANAGEMENT =====
    def do_save(self, arg):
        """Save current data: save [path]"""
        if arg.strip():
            self.save_path = Path(arg.strip())
        self._save()

    def do_load(self, arg):
        """Load saved data: load [path]"""
        path = Path(arg.strip()) if arg.strip() else self.save_path
        result = load_data(path)
        if result is None:
            print(self._t("load_failed", path=path))
            return

        self.account = result.account
        self.settings = result.settings
        self.save_path = path
        self._undo.clear()
        print(self._t("loaded", count=len(self.account.transactions), path=path))

    def do_settings(self, arg):
        """Show or change settings: settings [autosave on|off] [autoprocess on|off] [language CODE]"""
        args = arg.split()
        if not args:
            self._print_settings()
            return

        try:
            changes = {}
            i = 0
            while i < len(args):
                if i + 1 >= len(args):
                    raise ValueError(f"Missing value for {args[i]}")
                name, value = args[i].lower(), args[i + 1]
                if name == "autosave":
                    changes['auto_save'] = self._parse_toggle(value)
                elif name == "autoprocess":
                    changes['auto_process_on_startup'] = self._parse_toggle(value)
                elif name == "language":
                    code = value.upper()
                    if code not in i18n.available_languages():
                        print(self._t("unknown_language", code=value))
                        return
                    changes['language'] = code
                else:
                    raise ValueError(f"Unknown setting: {args[i]}")
                i += 2
        except ValueError as e:
            print(self._t("invalid_input", error=e))
            return

        self.settings = replace(self.settings, **changes)
        print(self._t("settings_updated"))
        self._after_change()

    def do_undo(self, arg):
        """Undo the last change"""
        if not self._undo:
            print(self._t("nothing_to_undo"))
            return
        self.account.restore(self._undo.pop())
        print(self._t("undone"))
        self._after_change()

    def do_reset(self, arg):
        """Delete the save file and start over with default categories"""
        if arg.strip().lower() != "yes":
            answer = input(self._t("reset_confirm"))
            if answer.strip().lower() != "yes":
                print(self._t("reset_cancelled"))
                return

        delete_save(self.save_path)
        logger.info("Account reset, save file %s removed", self.save_path)
        self.account = Account()
        self.settings = Settings(language=self.settings.language)
        self._undo.clear()
        print(self._t("reset_done"))

    # ===== UTILITIES =====
    def do_exit(self, arg):
        """Exit the program (saves first when auto-save is on)"""
        if self.settings.auto_save:
            self._save()
        print(self._t("goodbye"))
        return True

    do_EOF = do_exit

    # ===== HELPERS =====
    def _print_settings(self):
        on, off = self._t("on"), self._t("off")
        print(self._t("settings_title"))
        print(self._t("label_auto_save", value=on if self.settings.auto_save else off))
        print(self._t("label_auto_process", value=on if self.settings.auto_process_on_startup else off))
        print(self._t("label_language", value=self.settings.language))
        languages = ", ".join(f"{code} ({i18n.LANGUAGE_NAMES.get(code, code)})" for code in i18n.available_languages())
        print(self._t("available_languages", languages=languages))

    def _print_schedules(self):
        schedules = self.account.schedules
        if not schedules:
            print(self._t("no_schedules"))
            return
        print(self._t("schedules", count=len(schedules)))
        for i, s in enumerate(schedules):
            target = self._t("auto_alloc_target") if s.auto_allocate else (s.category or FALLBACK_CATEGORY)
            print(self._t("schedule_line", index=i, amount=s.amount, desc=self._describe(s),
                          next=format_date(s.next_occurrence), target=target, note=s.note))

    def _print_interest(self):
        rules = self.account.interest_rules
        if not rules:
            print(self._t("no_interest"))
            return
        print(self._t("interest_rules"))
        for key, rule in rules.items():
            print(self._t("interest_line", category=self.account.display_name(key), rate=rule.rate_percent,
                          periodicity=self._periodicity(rule.periodicity), start=format_date(rule.start_date),
                          applied=format_date(rule.last_applied_through)))

    def _describe(self, schedule: Schedule) -> str:
        if schedule.kind is ScheduleKind.EVERY_INTERVAL:
            return self._t("every_days", n=schedule.param)
        return self._t("monthly_on_day", n=schedule.param)

    def _periodicity(self, periodicity: Periodicity) -> str:
        return self._t(f"periodicity_{periodicity.value}")

    @staticmethod
    def _parse_toggle(value: str) -> bool:
        value = value.lower()
        if value in ("on", "1", "true", "yes"):
            return True
        if value in ("off", "0", "false", "no"):
            return False
        raise ValueError(f"Expected on/off, got {value!r}")

    @staticmethod
    def _parse_entry_args(arg: str, allow_category: bool) -> dict:
        """Parse ``<amount> [category] [YYYY-MM-DD] [--note text]``"""
        head, _, note = arg.partition("--note")
        args = shlex.split(head)
        if not args:
            raise ValueError("Missing amount")

        result = {
            'amount': parse_number(args[0]),
            'category': None,
            'date': today(),
            'note': note.strip(),
        }

        for token in args[1:]:
            try:
                result['date'] = parse_date(token)
                continue
            except ValueError:
                pass

            if allow_category and result['category'] is None:
                result['category'] = token
            else:
                raise ValueError(f"Unexpected argument: {token}")

        return result

    @staticmethod
    def _parse_schedule_args(args: list[str]) -> Schedule:
        if len(args) < 4:
            raise ValueError("Usage: schedule add every <days>|monthly <day> <amount> <YYYY-MM-DD> [options]")

        kinds = {"every": ScheduleKind.EVERY_INTERVAL, "monthly": ScheduleKind.MONTHLY_ON_DAY}
        if args[0].lower() not in kinds:
            raise ValueError("Schedule type must be 'every' or 'monthly'")
        kind = kinds[args[0].lower()]
        param = int(args[1])
        amount = parse_number(args[2])
        first = parse_date(args[3])

        auto_allocate = False
        category: Optional[str] = None
        note = ""
        i = 4
        while i < len(args):
            if args[i] == "--auto":
                auto_allocate = True
                i += 1
            elif args[i] == "--category":
                if i + 1 >= len(args):
                    raise ValueError("Missing category after --category")
                category = args[i + 1]
                i += 2
            elif args[i] == "--note":
                note = " ".join(args[i + 1:])
                break
            else:
                raise ValueError(f"Unknown flag: {args[i]}")

        schedule = Schedule(kind, param, amount, first, note, auto_allocate, category)
        if not schedule.is_valid():
            raise ValueError(f"Invalid schedule parameter: {schedule.describe()}")
        return schedule
