from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from erp.auth import CallerContext, assert_branch_scope, branch_filter
from erp.config import settings
from erp.db import transactional
from erp.errors import DuplicateCode, InsufficientStock, InvalidState, NotFound, PermissionDenied, ValidationError
from erp.models import (
    InventoryBalance,
    InventoryTransaction,
    InventoryTransactionDetail,
    Material,
    Product,
    TransactionStatus,
    TransactionType,
    User,
    Warehouse,
    WarehouseType,
)
from erp.services.audit_service import log_audit
from erp.services.code_service import next_transaction_code
from erp.services.item_ref import ItemRef, MaterialRef, ProductRef, item_ref_from
from erp.services.permission_service import has_permission, require_permission

logger = logging.getLogger(__name__)

ZERO = Decimal('0')

PERMISSION_BY_TYPE = {
    TransactionType.NHAP: 'inventory.import',
    TransactionType.XUAT: 'inventory.export',
    TransactionType.CHUYEN: 'inventory.transfer',
}

ITEM_KIND_BY_WAREHOUSE_TYPE = {
    WarehouseType.MATERIAL: MaterialRef.kind,
    WarehouseType.FINISHED_GOOD: ProductRef.kind,
}


@dataclass(frozen=True)
class StockLine:
    item: ItemRef
    quantity: Decimal
    unit_price: Decimal = ZERO
    notes: str | None = None

    @property
    def total_amount(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class TransactionCreated:
    id: int
    transaction_code: str


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _validate_lines(lines: list[StockLine]) -> None:
    if not lines:
        raise ValidationError('At least one line is required')
    for line in lines:
        if line.quantity <= ZERO:
            raise ValidationError(f'Quantity for {line.item.label} must be greater than zero')
        if line.unit_price < ZERO:
            raise ValidationError(f'Unit price for {line.item.label} cannot be negative')


def _get_warehouse(db: Session, warehouse_id: int) -> Warehouse:
    warehouse = db.get(Warehouse, warehouse_id)
    if not warehouse:
        raise NotFound(f'Warehouse #{warehouse_id} not found')
    return warehouse


def _check_items(db: Session, warehouse: Warehouse, lines: list[StockLine]) -> None:
    expected_kind = ITEM_KIND_BY_WAREHOUSE_TYPE[warehouse.warehouse_type]
    for line in lines:
        if line.item.kind != expected_kind:
            raise ValidationError(
                f'{warehouse.warehouse_name} holds {expected_kind.lower()}s, not {line.item.label}'
            )
        model = Product if isinstance(line.item, ProductRef) else Material
        if db.get(model, line.item.id) is None:
            raise NotFound(f'{line.item.label.capitalize()} not found')


def _aggregate(lines: list[StockLine]) -> OrderedDict[ItemRef, Decimal]:
    totals: dict[ItemRef, Decimal] = {}
    for line in lines:
        totals[line.item] = totals.get(line.item, ZERO) + line.quantity
    # Lock rows in a stable order so concurrent movements cannot deadlock.
    return OrderedDict(sorted(totals.items(), key=lambda pair: (pair[0].kind, pair[0].id)))


def _balance_where(warehouse_id: int, item: ItemRef):
    if isinstance(item, ProductRef):
        return and_(
            InventoryBalance.warehouse_id == warehouse_id,
            InventoryBalance.product_id == item.id,
            InventoryBalance.material_id.is_(None),
        )
    return and_(
        InventoryBalance.warehouse_id == warehouse_id,
        InventoryBalance.material_id == item.id,
        InventoryBalance.product_id.is_(None),
    )


def _locked_balance(db: Session, warehouse_id: int, item: ItemRef) -> InventoryBalance | None:
    return db.execute(
        select(InventoryBalance).where(_balance_where(warehouse_id, item)).with_for_update()
    ).scalar_one_or_none()


def _reserve_stock(db: Session, warehouse_id: int, requested: OrderedDict[ItemRef, Decimal]) -> dict[ItemRef, InventoryBalance]:
    """Lock and check every balance before anything is written."""
    balances: dict[ItemRef, InventoryBalance] = {}
    for item, quantity in requested.items():
        balance = _locked_balance(db, warehouse_id, item)
        if balance is None:
            raise InsufficientStock(item, requested=quantity, available=None)
        if balance.quantity < quantity:
            raise InsufficientStock(item, requested=quantity, available=balance.quantity)
        balances[item] = balance
    return balances


def _decrement(balances: dict[ItemRef, InventoryBalance], requested: OrderedDict[ItemRef, Decimal]) -> None:
    now = _now()
    for item, quantity in requested.items():
        balance = balances[item]
        balance.quantity = balance.quantity - quantity
        balance.last_updated = now


def _increment(db: Session, warehouse_id: int, requested: OrderedDict[ItemRef, Decimal]) -> None:
    now = _now()
    for item, quantity in requested.items():
        balance = _locked_balance(db, warehouse_id, item)
        if balance is None:
            try:
                with db.begin_nested():
                    balance = InventoryBalance(
                        warehouse_id=warehouse_id,
                        product_id=item.product_id,
                        material_id=item.material_id,
                        quantity=ZERO,
                        last_updated=now,
                    )
                    db.add(balance)
                    db.flush()
            except IntegrityError:
                balance = _locked_balance(db, warehouse_id, item)
                if balance is None:
                    raise
        balance.quantity = balance.quantity + quantity
        balance.last_updated = now


def _insert_transaction(
    db: Session,
    caller: CallerContext,
    *,
    transaction_type: TransactionType,
    from_warehouse_id: int | None,
    to_warehouse_id: int | None,
    lines: list[StockLine],
    notes: str | None,
    today: date | None,
) -> InventoryTransaction:
    code = next_transaction_code(db, transaction_type, today or _now().date())
    header = InventoryTransaction(
        transaction_code=code,
        transaction_type=transaction_type,
        from_warehouse_id=from_warehouse_id,
        to_warehouse_id=to_warehouse_id,
        status=TransactionStatus.PENDING,
        notes=notes,
        created_by=caller.user_id,
    )
    db.add(header)
    try:
        db.flush()
    except IntegrityError as exc:
        raise DuplicateCode(f'Transaction code {code} already exists') from exc

    for line in lines:
        db.add(
            InventoryTransactionDetail(
                transaction_id=header.id,
                product_id=line.item.product_id,
                material_id=line.item.material_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_amount=line.total_amount,
                notes=line.notes,
            )
        )
    db.flush()
    return header


def _created(db: Session, caller: CallerContext, header: InventoryTransaction, action: str) -> TransactionCreated:
    log_audit(
        db,
        actor_user_id=caller.user_id,
        action=action,
        metadata={'transaction_id': header.id, 'transaction_code': header.transaction_code},
    )
    logger.info('%s created by %s', header.transaction_code, caller.username)
    return TransactionCreated(id=header.id, transaction_code=header.transaction_code)


@transactional
def create_export(
    db: Session,
    caller: CallerContext,
    *,
    from_warehouse_id: int,
    lines: list[StockLine],
    notes: str | None = None,
    today: date | None = None,
) -> TransactionCreated:
    require_permission(db, caller, 'inventory.export', 'create')
    _validate_lines(lines)
    warehouse = _get_warehouse(db, from_warehouse_id)
    assert_branch_scope(caller, warehouse.branch_id)
    _check_items(db, warehouse, lines)

    requested = _aggregate(lines)
    balances = _reserve_stock(db, warehouse.id, requested)
    header = _insert_transaction(
        db,
        caller,
        transaction_type=TransactionType.XUAT,
        from_warehouse_id=warehouse.id,
        to_warehouse_id=None,
        lines=lines,
        notes=notes,
        today=today,
    )
    _decrement(balances, requested)
    return _created(db, caller, header, 'INVENTORY_EXPORT_CREATED')


@transactional
def create_import(
    db: Session,
    caller: CallerContext,
    *,
    to_warehouse_id: int,
    lines: list[StockLine],
    notes: str | None = None,
    today: date | None = None,
) -> TransactionCreated:
    require_permission(db, caller, 'inventory.import', 'create')
    _validate_lines(lines)
    warehouse = _get_warehouse(db, to_warehouse_id)
    assert_branch_scope(caller, warehouse.branch_id)
    _check_items(db, warehouse, lines)

    header = _insert_transaction(
        db,
        caller,
        transaction_type=TransactionType.NHAP,
        from_warehouse_id=None,
        to_warehouse_id=warehouse.id,
        lines=lines,
        notes=notes,
        today=today,
    )
    _increment(db, warehouse.id, _aggregate(lines))
    return _created(db, caller, header, 'INVENTORY_IMPORT_CREATED')


@transactional
def create_transfer(
    db: Session,
    caller: CallerContext,
    *,
    from_warehouse_id: int,
    to_warehouse_id: int,
    lines: list[StockLine],
    notes: str | None = None,
    today: date | None = None,
) -> TransactionCreated:
    require_permission(db, caller, 'inventory.transfer', 'create')
    _validate_lines(lines)
    if from_warehouse_id == to_warehouse_id:
        raise ValidationError('Source and destination warehouses must differ')
    source = _get_warehouse(db, from_warehouse_id)
    destination = _get_warehouse(db, to_warehouse_id)
    assert_branch_scope(caller, source.branch_id)
    if source.warehouse_type != destination.warehouse_type:
        raise ValidationError('Transfers must be between warehouses of the same type')
    _check_items(db, source, lines)

    requested = _aggregate(lines)
    balances = _reserve_stock(db, source.id, requested)
    header = _insert_transaction(
        db,
        caller,
        transaction_type=TransactionType.CHUYEN,
        from_warehouse_id=source.id,
        to_warehouse_id=destination.id,
        lines=lines,
        notes=notes,
        today=today,
    )
    _decrement(balances, requested)
    _increment(db, destination.id, requested)
    return _created(db, caller, header, 'INVENTORY_TRANSFER_CREATED')


def _visible_transaction(db: Session, caller: CallerContext, transaction_id: int, action: str, *, lock: bool = False):
    """Load a transaction the caller may ``action``.

    Permissions are resolved before the lookup. Rows of a type the caller holds
    no grant for, or outside their branch, read as missing.
    """
    permitted = [kind for kind, code in PERMISSION_BY_TYPE.items() if has_permission(db, caller, code, action)]
    if not permitted:
        logger.info('Denied inventory transaction %s to %s (%s)', action, caller.username, caller.role_code)
        raise PermissionDenied(f'You do not have permission to {action} inventory transactions')

    query = select(InventoryTransaction).where(
        InventoryTransaction.id == transaction_id,
        InventoryTransaction.transaction_type.in_(permitted),
    )
    branch_id = branch_filter(caller)
    if branch_id is not None:
        query = query.where(
            _branch_condition(branch_id, InventoryTransaction.from_warehouse_id, InventoryTransaction.to_warehouse_id)
        )
    if lock:
        query = query.with_for_update()
    header = db.execute(query).scalar_one_or_none()
    if not header:
        raise NotFound(f'Inventory transaction #{transaction_id} not found')
    return header


def _locked_pending_transaction(db: Session, caller: CallerContext, transaction_id: int) -> InventoryTransaction:
    header = _visible_transaction(db, caller, transaction_id, 'edit', lock=True)
    scope_warehouse_id = header.from_warehouse_id or header.to_warehouse_id
    assert_branch_scope(caller, _get_warehouse(db, scope_warehouse_id).branch_id)
    if header.status != TransactionStatus.PENDING:
        raise InvalidState(f'{header.transaction_code} is {header.status.value}, not PENDING')
    return header


@transactional
def approve_transaction(db: Session, caller: CallerContext, *, transaction_id: int) -> dict:
    header = _locked_pending_transaction(db, caller, transaction_id)
    header.status = TransactionStatus.APPROVED
    header.approved_by = caller.user_id
    header.approved_at = _now()
    log_audit(
        db,
        actor_user_id=caller.user_id,
        action='INVENTORY_TRANSACTION_APPROVED',
        metadata={'transaction_id': header.id},
    )
    logger.info('%s approved by %s', header.transaction_code, caller.username)
    return {'id': header.id, 'transaction_code': header.transaction_code, 'status': header.status.value}


@transactional
def cancel_transaction(db: Session, caller: CallerContext, *, transaction_id: int) -> dict:
    header = _locked_pending_transaction(db, caller, transaction_id)
    lines = [
        StockLine(item=item_ref_from(detail.product_id, detail.material_id), quantity=detail.quantity)
        for detail in header.details
    ]
    requested = _aggregate(lines)

    # Undo what creation applied: take back what was received, return what was issued.
    if header.to_warehouse_id is not None:
        _decrement(_reserve_stock(db, header.to_warehouse_id, requested), requested)
    if header.from_warehouse_id is not None:
        _increment(db, header.from_warehouse_id, requested)

    header.status = TransactionStatus.CANCELLED
    header.cancelled_by = caller.user_id
    header.cancelled_at = _now()
    log_audit(
        db,
        actor_user_id=caller.user_id,
        action='INVENTORY_TRANSACTION_CANCELLED',
        metadata={'transaction_id': header.id},
    )
    logger.info('%s cancelled by %s', header.transaction_code, caller.username)
    return {'id': header.id, 'transaction_code': header.transaction_code, 'status': header.status.value}


def _transaction_rows(db: Session, *conditions, limit: int | None = None) -> list[dict]:
    source = aliased(Warehouse)
    destination = aliased(Warehouse)
    creator = aliased(User)
    approver = aliased(User)
    total_amount = (
        select(func.coalesce(func.sum(InventoryTransactionDetail.total_amount), 0))
        .where(InventoryTransactionDetail.transaction_id == InventoryTransaction.id)
        .correlate(InventoryTransaction)
        .scalar_subquery()
    )
    query = (
        select(
            InventoryTransaction,
            source.warehouse_name,
            destination.warehouse_name,
            creator.full_name,
            approver.full_name,
            total_amount,
        )
        .outerjoin(source, source.id == InventoryTransaction.from_warehouse_id)
        .outerjoin(destination, destination.id == InventoryTransaction.to_warehouse_id)
        .outerjoin(creator, creator.id == InventoryTransaction.created_by)
        .outerjoin(approver, approver.id == InventoryTransaction.approved_by)
        .where(*conditions)
        .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)

    return [
        {
            'id': trans.id,
            'transaction_code': trans.transaction_code,
            'transaction_type': trans.transaction_type.value,
            'from_warehouse_id': trans.from_warehouse_id,
            'from_warehouse_name': from_name,
            'to_warehouse_id': trans.to_warehouse_id,
            'to_warehouse_name': to_name,
            'status': trans.status.value,
            'notes': trans.notes,
            'created_by': trans.created_by,
            'created_by_name': created_by_name,
            'created_at': trans.created_at,
            'approved_by': trans.approved_by,
            'approved_by_name': approved_by_name,
            'approved_at': trans.approved_at,
            'cancelled_by': trans.cancelled_by,
            'cancelled_at': trans.cancelled_at,
            'total_amount': Decimal(str(total)),
        }
        for trans, from_name, to_name, created_by_name, approved_by_name, total in db.execute(query).all()
    ]


def _branch_condition(branch_id: int, *warehouse_columns):
    clauses = [
        column.in_(select(Warehouse.id).where(Warehouse.branch_id == branch_id)) for column in warehouse_columns
    ]
    return or_(*clauses)


def list_transactions(
    db: Session,
    caller: CallerContext,
    *,
    transaction_type: TransactionType,
    status: TransactionStatus | None = None,
    warehouse_id: int | None = None,
) -> list[dict]:
    require_permission(db, caller, PERMISSION_BY_TYPE[transaction_type], 'view')

    conditions = [InventoryTransaction.transaction_type == transaction_type]
    if status is not None:
        conditions.append(InventoryTransaction.status == status)
    if warehouse_id is not None:
        column = (
            InventoryTransaction.to_warehouse_id
            if transaction_type == TransactionType.NHAP
            else InventoryTransaction.from_warehouse_id
        )
        conditions.append(column == warehouse_id)

    branch_id = branch_filter(caller)
    if branch_id is not None:
        if transaction_type == TransactionType.NHAP:
            columns = (InventoryTransaction.to_warehouse_id,)
        elif transaction_type == TransactionType.XUAT:
            columns = (InventoryTransaction.from_warehouse_id,)
        else:
            columns = (InventoryTransaction.from_warehouse_id, InventoryTransaction.to_warehouse_id)
        conditions.append(_branch_condition(branch_id, *columns))

    return _transaction_rows(db, *conditions)


def get_history(db: Session, caller: CallerContext, *, warehouse_id: int) -> list[dict]:
    require_permission(db, caller, 'inventory.balance', 'view')
    warehouse = _get_warehouse(db, warehouse_id)
    assert_branch_scope(caller, warehouse.branch_id)
    return _transaction_rows(
        db,
        or_(
            InventoryTransaction.from_warehouse_id == warehouse_id,
            InventoryTransaction.to_warehouse_id == warehouse_id,
        ),
        limit=settings.history_limit,
    )


def get_transaction(db: Session, caller: CallerContext, *, transaction_id: int) -> dict:
    header = _visible_transaction(db, caller, transaction_id, 'view')
    scope_warehouse_id = header.from_warehouse_id or header.to_warehouse_id
    assert_branch_scope(caller, _get_warehouse(db, scope_warehouse_id).branch_id)

    row = _transaction_rows(db, InventoryTransaction.id == transaction_id)[0]
    detail_rows = db.execute(
        select(
            InventoryTransactionDetail,
            Product.product_code,
            Product.product_name,
            Material.material_code,
            Material.material_name,
        )
        .outerjoin(Product, Product.id == InventoryTransactionDetail.product_id)
        .outerjoin(Material, Material.id == InventoryTransactionDetail.material_id)
        .where(InventoryTransactionDetail.transaction_id == transaction_id)
        .order_by(InventoryTransactionDetail.id.asc())
    ).all()
    row['details'] = [
        {
            'id': detail.id,
            'product_id': detail.product_id,
            'material_id': detail.material_id,
            'item_code': product_code or material_code,
            'item_name': product_name or material_name,
            'quantity': detail.quantity,
            'unit_price': detail.unit_price,
            'total_amount': detail.total_amount,
            'notes': detail.notes,
        }
        for detail, product_code, product_name, material_code, material_name in detail_rows
    ]
    return row


def _master_columns(warehouse_type: WarehouseType):
    if warehouse_type == WarehouseType.MATERIAL:
        return (
            Material,
            Material.id,
            Material.material_code,
            Material.material_name,
            Material.unit,
            InventoryBalance.material_id,
        )
    return (
        Product,
        Product.id,
        Product.product_code,
        Product.product_name,
        Product.unit,
        InventoryBalance.product_id,
    )


def get_balance(db: Session, caller: CallerContext, *, warehouse_id: int, show_all: bool = True) -> dict:
    """Stock on hand for one warehouse.

    ``details`` lists every active master item of the warehouse's branch when
    ``show_all`` is set (items without a balance row show zero), otherwise only
    items with a positive quantity. ``summary`` always lists every master item.
    """
    require_permission(db, caller, 'inventory.balance', 'view')
    warehouse = _get_warehouse(db, warehouse_id)
    assert_branch_scope(caller, warehouse.branch_id)

    model, id_col, code_col, name_col, unit_col, balance_fk = _master_columns(warehouse.warehouse_type)
    item_type = ITEM_KIND_BY_WAREHOUSE_TYPE[warehouse.warehouse_type]
    quantity = func.coalesce(InventoryBalance.quantity, 0)

    master_rows = db.execute(
        select(id_col, code_col, name_col, unit_col, quantity)
        .outerjoin(
            InventoryBalance,
            and_(balance_fk == id_col, InventoryBalance.warehouse_id == warehouse.id),
        )
        .where(model.branch_id == warehouse.branch_id, model.is_active.is_(True))
        .order_by(name_col.asc())
    ).all()

    if show_all:
        detail_rows = master_rows
    else:
        detail_rows = db.execute(
            select(id_col, code_col, name_col, unit_col, InventoryBalance.quantity)
            .join(InventoryBalance, balance_fk == id_col)
            .where(InventoryBalance.warehouse_id == warehouse.id, InventoryBalance.quantity > 0)
            .order_by(name_col.asc())
        ).all()

    details = [
        {
            'warehouse_id': warehouse.id,
            'warehouse_name': warehouse.warehouse_name,
            'item_id': item_id,
            'item_code': code,
            'item_name': name,
            'item_type': item_type,
            'quantity': Decimal(str(qty)),
            'unit': unit,
        }
        for item_id, code, name, unit, qty in detail_rows
    ]
    summary = [
        {
            'item_id': item_id,
            'item_code': code,
            'item_name': name,
            'item_type': item_type,
            'total_quantity': Decimal(str(qty)),
            'unit': unit,
        }
        for item_id, code, name, unit, qty in master_rows
    ]
    return {'details': details, 'summary': summary}
