import argparse
import logging
from datetime import date, datetime, timezone

from erp.config import settings
from erp.db import SessionLocal
from erp.services.debt_service import refresh_debt_statuses

logger = logging.getLogger(__name__)


def refresh(today: date) -> int:
    with SessionLocal() as db:
        changed = refresh_debt_statuses(db, today=today)
        db.commit()
    logger.info('Refreshed debt statuses as of %s: %d changed', today.isoformat(), changed)
    return changed


def main() -> None:
    parser = argparse.ArgumentParser(description='Recompute stored debt statuses (marks past-due debts OVERDUE).')
    parser.add_argument(
        '--date',
        type=date.fromisoformat,
        default=None,
        help='Evaluate due dates as of this day (YYYY-MM-DD). Defaults to today in UTC.',
    )
    args = parser.parse_args()
    logging.basicConfig(level=settings.log_level.upper())

    today = args.date or datetime.now(tz=timezone.utc).date()
    changed = refresh(today)
    print(f'Debt status refresh complete: changed={changed}')


if __name__ == '__main__':
    main()
