from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from erp.auth import ADMIN_ROLE_CODE, CallerContext
from erp.models import (
    BankAccount,
    Base,
    Branch,
    Customer,
    InventoryBalance,
    Material,
    OrderStatus,
    Permission,
    Product,
    PurchaseOrder,
    Role,
    RolePermission,
    SalesOrder,
    Supplier,
    User,
    Warehouse,
    WarehouseType,
)
from erp.services.inventory_service import _balance_where
from erp.services.item_ref import ItemRef
from erp.services.permission_service import PERMISSION_CATALOGUE

STAFF_GRANTS = {
    'inventory.import': (True, True, False, False),
    'inventory.export': (True, True, False, False),
    'inventory.balance': (True, False, False, False),
}


def make_engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself.
    @event.listens_for(engine, 'connect')
    def _disable_pysqlite_transactions(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _emit_begin(conn):
        conn.exec_driver_sql('BEGIN')

    Base.metadata.create_all(engine)
    return engine


def make_session() -> Session:
    return sessionmaker(bind=make_engine(), autoflush=False, expire_on_commit=False)()


def _caller(user: User, role: Role) -> CallerContext:
    return CallerContext(
        user_id=user.id,
        username=user.username,
        role_code=role.role_code,
        role_id=role.id,
        branch_id=user.branch_id,
    )


def seed_org(db: Session) -> SimpleNamespace:
    """Two branches, an unrestricted admin and a branch-bound staff member with inventory-only grants."""
    branch = Branch(branch_code='HN', branch_name='Ha Noi', is_active=True)
    other_branch = Branch(branch_code='HCM', branch_name='Ho Chi Minh', is_active=True)
    admin_role = Role(role_code=ADMIN_ROLE_CODE, role_name='Administrator')
    staff_role = Role(role_code='STAFF', role_name='Staff')
    db.add_all([branch, other_branch, admin_role, staff_role])
    db.flush()

    permissions = {}
    for code, module, description in PERMISSION_CATALOGUE:
        permissions[code] = Permission(permission_code=code, module=module, description=description)
        db.add(permissions[code])
    db.flush()
    for code, (can_view, can_create, can_edit, can_delete) in STAFF_GRANTS.items():
        db.add(
            RolePermission(
                role_id=staff_role.id,
                permission_id=permissions[code].id,
                can_view=can_view,
                can_create=can_create,
                can_edit=can_edit,
                can_delete=can_delete,
            )
        )

    admin_user = User(username='admin', password_hash='x', full_name='Admin', role_id=admin_role.id, is_active=True)
    staff_user = User(
        username='staff',
        password_hash='x',
        full_name='Staff',
        role_id=staff_role.id,
        branch_id=branch.id,
        is_active=True,
    )
    db.add_all([admin_user, staff_user])
    db.commit()

    return SimpleNamespace(
        branch=branch,
        other_branch=other_branch,
        admin_user=admin_user,
        staff_user=staff_user,
        admin=_caller(admin_user, admin_role),
        staff=_caller(staff_user, staff_role),
    )


def add_warehouse(db: Session, branch_id: int, code: str, warehouse_type: WarehouseType) -> Warehouse:
    warehouse = Warehouse(
        warehouse_code=code,
        warehouse_name=f'Warehouse {code}',
        warehouse_type=warehouse_type,
        branch_id=branch_id,
        is_active=True,
    )
    db.add(warehouse)
    db.commit()
    return warehouse


def add_product(db: Session, branch_id: int, code: str, name: str | None = None) -> Product:
    product = Product(product_code=code, product_name=name or code, unit='pcs', branch_id=branch_id, is_active=True)
    db.add(product)
    db.commit()
    return product


def add_material(db: Session, branch_id: int, code: str, name: str | None = None) -> Material:
    material = Material(material_code=code, material_name=name or code, unit='kg', branch_id=branch_id, is_active=True)
    db.add(material)
    db.commit()
    return material


def set_balance(db: Session, warehouse_id: int, item: ItemRef, quantity) -> None:
    db.add(
        InventoryBalance(
            warehouse_id=warehouse_id,
            product_id=item.product_id,
            material_id=item.material_id,
            quantity=Decimal(str(quantity)),
            last_updated=datetime.now(tz=timezone.utc),
        )
    )
    db.commit()


def balance_of(db: Session, warehouse_id: int, item: ItemRef) -> Decimal | None:
    db.expire_all()
    return db.execute(select(InventoryBalance.quantity).where(_balance_where(warehouse_id, item))).scalar_one_or_none()


def add_customer(db: Session, code: str, name: str | None = None) -> Customer:
    customer = Customer(customer_code=code, customer_name=name or code, debt_amount=Decimal('0'), is_active=True)
    db.add(customer)
    db.commit()
    return customer


def add_supplier(db: Session, code: str, name: str | None = None) -> Supplier:
    supplier = Supplier(supplier_code=code, supplier_name=name or code, debt_amount=Decimal('0'), is_active=True)
    db.add(supplier)
    db.commit()
    return supplier


def add_sales_order(
    db: Session,
    customer: Customer,
    code: str,
    final_amount,
    *,
    created_at: datetime,
    paid_amount='0',
    branch_id: int | None = None,
    status: OrderStatus = OrderStatus.CONFIRMED,
) -> SalesOrder:
    final_amount = Decimal(str(final_amount))
    order = SalesOrder(
        order_code=code,
        customer_id=customer.id,
        branch_id=branch_id,
        order_date=created_at.date(),
        total_amount=final_amount,
        discount_amount=Decimal('0'),
        final_amount=final_amount,
        paid_amount=Decimal(str(paid_amount)),
        status=status,
        created_at=created_at,
    )
    db.add(order)
    db.commit()
    return order


def add_purchase_order(
    db: Session,
    supplier: Supplier,
    code: str,
    total_amount,
    *,
    created_at: datetime,
    paid_amount='0',
    branch_id: int | None = None,
) -> PurchaseOrder:
    order = PurchaseOrder(
        po_code=code,
        supplier_id=supplier.id,
        branch_id=branch_id,
        order_date=created_at.date(),
        total_amount=Decimal(str(total_amount)),
        paid_amount=Decimal(str(paid_amount)),
        status=OrderStatus.CONFIRMED,
        created_at=created_at,
    )
    db.add(order)
    db.commit()
    return order


def add_bank_account(db: Session, number: str, balance='0', branch_id: int | None = None) -> BankAccount:
    account = BankAccount(
        account_number=number,
        account_holder='Company',
        bank_name='Test Bank',
        balance=Decimal(str(balance)),
        branch_id=branch_id,
        is_active=True,
    )
    db.add(account)
    db.commit()
    return account
