from __future__ import annotations

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp.auth import CallerContext, branch_filter
from erp.db import transactional
from erp.errors import DuplicateCode, ValidationError
from erp.models import BankAccount
from erp.services.audit_service import log_audit
from erp.services.permission_service import require_permission

logger = logging.getLogger(__name__)


def _account_dict(account: BankAccount) -> dict:
    return {
        'id': account.id,
        'account_number': account.account_number,
        'account_holder': account.account_holder,
        'bank_name': account.bank_name,
        'branch_name': account.branch_name,
        'balance': account.balance,
        'branch_id': account.branch_id,
        'is_active': account.is_active,
    }


def list_bank_accounts(db: Session, caller: CallerContext, *, is_active: bool | None = None) -> list[dict]:
    require_permission(db, caller, 'finance.bank_accounts', 'view')
    query = select(BankAccount)
    branch_id = branch_filter(caller)
    if branch_id is not None:
        query = query.where(BankAccount.branch_id == branch_id)
    if is_active is not None:
        query = query.where(BankAccount.is_active.is_(is_active))
    accounts = db.execute(query.order_by(BankAccount.bank_name.asc(), BankAccount.account_number.asc())).scalars()
    return [_account_dict(account) for account in accounts]


@transactional
def create_bank_account(
    db: Session,
    caller: CallerContext,
    *,
    account_number: str,
    account_holder: str,
    bank_name: str,
    branch_name: str | None = None,
    balance: Decimal = Decimal('0'),
    branch_id: int | None = None,
) -> dict:
    require_permission(db, caller, 'finance.bank_accounts', 'create')
    if not account_number.strip() or not account_holder.strip() or not bank_name.strip():
        raise ValidationError('Account number, holder and bank name are required')
    if not caller.is_admin:
        branch_id = caller.branch_id

    account = BankAccount(
        account_number=account_number.strip(),
        account_holder=account_holder.strip(),
        bank_name=bank_name.strip(),
        branch_name=branch_name,
        balance=balance,
        branch_id=branch_id,
        is_active=True,
    )
    db.add(account)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateCode(f'Account number {account_number} already exists') from exc

    log_audit(db, actor_user_id=caller.user_id, action='BANK_ACCOUNT_CREATED', metadata={'bank_account_id': account.id})
    logger.info('Bank account %s created by %s', account.account_number, caller.username)
    return _account_dict(account)
