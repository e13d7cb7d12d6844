from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp.auth import CallerContext
from erp.errors import PermissionDenied, ValidationError
from erp.models import Permission, RolePermission

logger = logging.getLogger(__name__)

ACTIONS = ('view', 'create', 'edit', 'delete')

PERMISSION_CATALOGUE = (
    ('inventory.import', 'inventory', 'Goods receipts into a warehouse'),
    ('inventory.export', 'inventory', 'Goods issues out of a warehouse'),
    ('inventory.transfer', 'inventory', 'Transfers between warehouses'),
    ('inventory.balance', 'inventory', 'Stock on hand and movement history'),
    ('finance.debts', 'finance', 'Receivables, payables and payments'),
    ('finance.bank_accounts', 'finance', 'Bank accounts'),
    ('admin.warehouses', 'admin', 'Warehouse master data'),
)


def _grant_allows(grant: RolePermission, action: str) -> bool:
    return {
        'view': grant.can_view,
        'create': grant.can_create,
        'edit': grant.can_edit,
        'delete': grant.can_delete,
    }[action]


def has_permission(db: Session, caller: CallerContext, permission_code: str, action: str) -> bool:
    if action not in ACTIONS:
        raise ValidationError(f'Unknown permission action {action!r}')
    if caller.is_admin:
        return True
    if caller.role_id is None:
        return False

    grant = db.execute(
        select(RolePermission)
        .join(Permission, Permission.id == RolePermission.permission_id)
        .where(
            RolePermission.role_id == caller.role_id,
            Permission.permission_code == permission_code,
        )
    ).scalar_one_or_none()
    return grant is not None and _grant_allows(grant, action)


def require_permission(db: Session, caller: CallerContext, permission_code: str, action: str) -> None:
    if has_permission(db, caller, permission_code, action):
        return
    logger.info('Denied %s.%s to %s (%s)', permission_code, action, caller.username, caller.role_code)
    raise PermissionDenied(f'You do not have permission to {action} {permission_code}')


def list_role_permissions(db: Session, *, role_id: int) -> list[dict]:
    rows = db.execute(
        select(Permission, RolePermission)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role_id)
        .order_by(Permission.module.asc(), Permission.permission_code.asc())
    ).all()
    return [
        {
            'permission_code': permission.permission_code,
            'can_view': grant.can_view,
            'can_create': grant.can_create,
            'can_edit': grant.can_edit,
            'can_delete': grant.can_delete,
        }
        for permission, grant in rows
    ]
