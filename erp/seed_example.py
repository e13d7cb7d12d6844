from decimal import Decimal

from sqlalchemy import select

from erp.auth import ADMIN_ROLE_CODE
from erp.db import SessionLocal, engine
from erp.models import (
    BankAccount,
    Base,
    Branch,
    Customer,
    Material,
    Permission,
    Product,
    Role,
    RolePermission,
    Supplier,
    User,
    Warehouse,
    WarehouseType,
)
from erp.security.passwords import hash_password
from erp.services.permission_service import PERMISSION_CATALOGUE

# role code -> {permission code: (view, create, edit, delete)}
ROLE_GRANTS = {
    'MANAGER': {code: (True, True, True, True) for code, _, _ in PERMISSION_CATALOGUE},
    'STAFF': {
        'inventory.import': (True, True, False, False),
        'inventory.export': (True, True, False, False),
        'inventory.transfer': (True, True, False, False),
        'inventory.balance': (True, False, False, False),
    },
}


def _get_or_add(db, model, lookup: dict, **values):
    row = db.execute(select(model).filter_by(**lookup)).scalar_one_or_none()
    if not row:
        row = model(**lookup, **values)
        db.add(row)
        db.flush()
    return row


def seed() -> None:
    Base.metadata.create_all(engine)
    with SessionLocal() as db:
        branch = _get_or_add(db, Branch, {'branch_code': 'HQ'}, branch_name='Head Office', is_active=True)

        permissions = {
            code: _get_or_add(db, Permission, {'permission_code': code}, module=module, description=description)
            for code, module, description in PERMISSION_CATALOGUE
        }

        admin_role = _get_or_add(db, Role, {'role_code': ADMIN_ROLE_CODE}, role_name='Administrator')
        roles = {ADMIN_ROLE_CODE: admin_role}
        for role_code, grants in ROLE_GRANTS.items():
            role = _get_or_add(db, Role, {'role_code': role_code}, role_name=role_code.title())
            roles[role_code] = role
            for permission_code, (can_view, can_create, can_edit, can_delete) in grants.items():
                _get_or_add(
                    db,
                    RolePermission,
                    {'role_id': role.id, 'permission_id': permissions[permission_code].id},
                    can_view=can_view,
                    can_create=can_create,
                    can_edit=can_edit,
                    can_delete=can_delete,
                )

        for username, password, full_name, role_code, branch_id in (
            ('admin', 'adminpass', 'System Administrator', ADMIN_ROLE_CODE, None),
            ('manager', 'managerpass', 'Branch Manager', 'MANAGER', branch.id),
            ('staff', 'staffpass', 'Warehouse Staff', 'STAFF', branch.id),
        ):
            if not db.execute(select(User).where(User.username == username)).scalar_one_or_none():
                db.add(
                    User(
                        username=username,
                        password_hash=hash_password(password),
                        full_name=full_name,
                        role_id=roles[role_code].id,
                        branch_id=branch_id,
                        is_active=True,
                    )
                )

        _get_or_add(
            db,
            Warehouse,
            {'warehouse_code': 'WH-MAT'},
            warehouse_name='Raw Materials',
            warehouse_type=WarehouseType.MATERIAL,
            branch_id=branch.id,
            is_active=True,
        )
        _get_or_add(
            db,
            Warehouse,
            {'warehouse_code': 'WH-FG'},
            warehouse_name='Finished Goods',
            warehouse_type=WarehouseType.FINISHED_GOOD,
            branch_id=branch.id,
            is_active=True,
        )

        for code, name in (('SP001', 'Jasmine Tea 500g'), ('SP002', 'Oolong Tea 250g')):
            _get_or_add(db, Product, {'product_code': code}, product_name=name, unit='box', branch_id=branch.id)
        for code, name in (('NL001', 'Dried Jasmine Leaf'), ('NL002', 'Kraft Paper Bag')):
            _get_or_add(db, Material, {'material_code': code}, material_name=name, unit='kg', branch_id=branch.id)

        _get_or_add(db, Customer, {'customer_code': 'KH001'}, customer_name='Demo Customer', phone='0900000001')
        _get_or_add(db, Supplier, {'supplier_code': 'NCC001'}, supplier_name='Demo Supplier', phone='0900000002')
        _get_or_add(
            db,
            BankAccount,
            {'account_number': '0011001234567'},
            account_holder='Head Office',
            bank_name='Demo Bank',
            balance=Decimal('0'),
            branch_id=branch.id,
        )

        db.commit()


if __name__ == '__main__':
    seed()
    print('Seed data inserted/verified.')
