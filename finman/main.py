from datetime import date
from pathlib import Path
from typing import Optional

from finman.cli import FinanceCLI
from finman.dates import format_date, today
from finman.i18n import resolve
from finman.interest import apply_interest_up_to
from finman.logging_setup import configure_logging, get_logger
from finman.logic import Account
from finman.models import Settings
from finman.schedules import process_schedules_up_to
from finman.storage import LOG_FILE, SAVE_FILE, load_data


logger = get_logger("finman.main")


def startup(save_path: Path = SAVE_FILE, as_of: Optional[date] = None) -> tuple[Account, Settings]:
    """Load the store (or start fresh) and run startup processing when enabled."""
    result = load_data(save_path)
    if result is None:
        settings = Settings()
        logger.info("No store at %s, starting a fresh account", save_path)
        print(resolve(settings.language, "first_run"))
        return Account(), settings

    account, settings = result.account, result.settings
    if settings.auto_process_on_startup:
        as_of = as_of or today()
        process_schedules_up_to(account, as_of)
        apply_interest_up_to(account, as_of)
        print(resolve(settings.language, "startup_processed").format(date=format_date(as_of)))
    return account, settings


def main():
    configure_logging(log_file=LOG_FILE)
    account, settings = startup(SAVE_FILE)
    FinanceCLI(account, settings, SAVE_FILE).cmdloop()


if __name__ == "__main__":
    main()
