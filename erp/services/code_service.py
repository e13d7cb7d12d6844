from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp.errors import DuplicateCode
from erp.models import CodeSequence, InventoryTransaction, TransactionType

TRANSACTION_CODE_PREFIXES = {
    TransactionType.NHAP: 'PN',
    TransactionType.XUAT: 'PX',
    TransactionType.CHUYEN: 'PC',
}
SEQUENCE_WIDTH = 4
MAX_SEQUENCE = 10**SEQUENCE_WIDTH - 1


def date_key(day: date) -> str:
    return day.strftime('%y%m%d')


def format_code(prefix: str, key: str, sequence: int) -> str:
    return f'{prefix}{key}{sequence:0{SEQUENCE_WIDTH}d}'


def parse_sequence(code: str | None, stem: str) -> int:
    """Sequence number of ``code`` when it starts with ``stem``, otherwise 0."""
    if not code or not code.startswith(stem):
        return 0
    tail = code[len(stem) :]
    return int(tail) if tail.isdigit() else 0


def _last_existing_code(db: Session, stem: str) -> str | None:
    # Fixed-width date and zero-padded sequence make string order match numeric order.
    return db.execute(
        select(InventoryTransaction.transaction_code)
        .where(InventoryTransaction.transaction_code.like(f'{stem}%'))
        .order_by(InventoryTransaction.transaction_code.desc())
        .limit(1)
    ).scalar_one_or_none()


def _locked_sequence(db: Session, prefix: str, key: str) -> CodeSequence | None:
    return db.execute(
        select(CodeSequence)
        .where(CodeSequence.prefix == prefix, CodeSequence.date_key == key)
        .with_for_update()
    ).scalar_one_or_none()


def next_transaction_code(db: Session, transaction_type: TransactionType, today: date) -> str:
    prefix = TRANSACTION_CODE_PREFIXES[transaction_type]
    key = date_key(today)
    stem = prefix + key

    row = _locked_sequence(db, prefix, key)
    if row is None:
        seed = parse_sequence(_last_existing_code(db, stem), stem)
        try:
            with db.begin_nested():
                row = CodeSequence(prefix=prefix, date_key=key, last_value=seed)
                db.add(row)
                db.flush()
        except IntegrityError:
            # Another request created today's counter first.
            row = _locked_sequence(db, prefix, key)
            if row is None:
                raise DuplicateCode(f'Could not reserve a {prefix} code for {key}') from None

    next_value = row.last_value + 1
    if next_value > MAX_SEQUENCE:
        raise DuplicateCode(f'Daily {prefix} code sequence for {key} is exhausted')
    row.last_value = next_value
    return format_code(prefix, key, next_value)
