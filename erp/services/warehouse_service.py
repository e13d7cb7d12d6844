from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from erp.auth import CallerContext, assert_branch_scope, branch_filter
from erp.db import transactional
from erp.errors import DuplicateCode, NotFound, ValidationError
from erp.models import Branch, Warehouse, WarehouseType
from erp.services.audit_service import log_audit
from erp.services.permission_service import require_permission

logger = logging.getLogger(__name__)


def _warehouse_dict(warehouse: Warehouse, branch_name: str | None) -> dict:
    return {
        'id': warehouse.id,
        'warehouse_code': warehouse.warehouse_code,
        'warehouse_name': warehouse.warehouse_name,
        'warehouse_type': warehouse.warehouse_type.value,
        'branch_id': warehouse.branch_id,
        'branch_name': branch_name,
        'is_active': warehouse.is_active,
    }


def list_warehouses(db: Session, caller: CallerContext, *, active_only: bool = True) -> list[dict]:
    require_permission(db, caller, 'admin.warehouses', 'view')
    query = select(Warehouse, Branch.branch_name).join(Branch, Branch.id == Warehouse.branch_id)
    if active_only:
        query = query.where(Warehouse.is_active.is_(True))
    branch_id = branch_filter(caller)
    if branch_id is not None:
        query = query.where(Warehouse.branch_id == branch_id)
    rows = db.execute(query.order_by(Warehouse.warehouse_code.asc())).all()
    return [_warehouse_dict(warehouse, branch_name) for warehouse, branch_name in rows]


@transactional
def create_warehouse(
    db: Session,
    caller: CallerContext,
    *,
    warehouse_code: str,
    warehouse_name: str,
    warehouse_type: WarehouseType,
    branch_id: int,
) -> dict:
    require_permission(db, caller, 'admin.warehouses', 'create')
    warehouse_code = (warehouse_code or '').strip()
    warehouse_name = (warehouse_name or '').strip()
    if not warehouse_code or not warehouse_name:
        raise ValidationError('Warehouse code and name are required')
    branch = db.get(Branch, branch_id)
    if not branch:
        raise NotFound(f'Branch #{branch_id} not found')
    assert_branch_scope(caller, branch.id)

    warehouse = Warehouse(
        warehouse_code=warehouse_code,
        warehouse_name=warehouse_name,
        warehouse_type=warehouse_type,
        branch_id=branch.id,
        is_active=True,
    )
    db.add(warehouse)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateCode(f'Warehouse code {warehouse_code} already exists') from exc

    log_audit(db, actor_user_id=caller.user_id, action='WAREHOUSE_CREATED', metadata={'warehouse_id': warehouse.id})
    logger.info('Warehouse %s created by %s', warehouse_code, caller.username)
    return _warehouse_dict(warehouse, branch.branch_name)
