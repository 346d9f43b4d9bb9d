#!/usr/bin/env python
"""Idempotent seed script for demo identities, devices and one worked case.

Usage:
    python backend/scripts/seed_demo.py                  # seed normally
    python backend/scripts/seed_demo.py --dry-run        # seed a throwaway in-memory database instead
    python backend/scripts/seed_demo.py --show-users     # print identities and capabilities afterwards

Re-running never duplicates rows: identities are matched by username, devices by
IMEI, and the demo case is only opened on a device without cases.
"""
from __future__ import annotations
import os, sys, argparse, textwrap
from sqlalchemy import select, text

# Allow running from repo root
sys.path.append(os.path.abspath('backend'))

from servicetrack import create_app, get_db, import_models  # type: ignore
from servicetrack.constants.permissions import CAPABILITY_PRESETS, ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER
from servicetrack.models.authz import User
from servicetrack.models.customer import Device
from servicetrack.models.service_case import ServiceRound
from servicetrack.models.shipment import Shipment
from servicetrack.services import cases as case_svc
from servicetrack.services import permissions as perm_store
from servicetrack.services import shipments as shipment_svc
from servicetrack.services.customers import create_device
from servicetrack.services.users import create_user

DEFAULT_PASSWORD = os.getenv('SEED_PASSWORD', 'password123')

STAFF = [
    ('staff1', 'Technician', 'tech1@example.com'),
    ('staff2', 'Logistics', 'logistics@example.com'),
]
CUSTOMERS = [
    ('customer1', 'Alex Chen', 'alex@example.com', '+1 555 0101', '12 Harbour Road'),
    ('customer2', 'Sam Patel', 'sam@example.com', '+1 555 0102', '88 Station Street'),
]
DEVICES = [
    ('customer1', 'Apple', 'iPhone 14 Pro', '356789012345678', 'Deep Purple', '256GB'),
    ('customer1', 'Samsung', 'Galaxy S23', '356789012345679', 'Phantom Black', '128GB'),
    ('customer2', 'Google', 'Pixel 8', '356789012345680', 'Obsidian', '128GB'),
]
DEMO_FLOW = (
    ServiceRound.STATUS_RECEIVED, ServiceRound.STATUS_DIAGNOSING, ServiceRound.STATUS_REPAIRING,
    ServiceRound.STATUS_QA, ServiceRound.STATUS_SHIPPING, ServiceRound.STATUS_DELIVERED,
)


def ensure_user(session, username, role, **kwargs):
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if user:
        return user, False
    return create_user(session, username, DEFAULT_PASSWORD, role, **kwargs), True


def ensure_device(session, customer_id, brand, model, imei, color, storage):
    device = session.execute(select(Device).where(Device.imei == imei)).scalar_one_or_none()
    if device:
        return device, False
    return create_device(session, customer_id, brand, model, imei=imei, color=color, storage=storage), True


def seed(session):
    created = {'users': 0, 'devices': 0, 'cases': 0}
    admin, new = ensure_user(session, os.getenv('SEED_ADMIN_USERNAME', 'admin'), ROLE_ADMIN, email='admin@example.com')
    created['users'] += new
    for username, preset, email in STAFF:
        staff, new = ensure_user(session, username, ROLE_STAFF, email=email)
        created['users'] += new
        if new:
            perm_store.grant_all(session, staff.id, CAPABILITY_PRESETS[preset], admin.id)
    owners = {}
    for username, name, email, phone, address in CUSTOMERS:
        user, new = ensure_user(session, username, ROLE_CUSTOMER, email=email, phone=phone,
                                customer_name=name, customer_address=address)
        created['users'] += new
        owners[username] = user.customer.id
    tech = session.execute(select(User).where(User.username == STAFF[0][0])).scalar_one()
    for owner, brand, model, imei, color, storage in DEVICES:
        device, new = ensure_device(session, owners[owner], brand, model, imei, color, storage)
        created['devices'] += new
    first = session.execute(select(Device).where(Device.imei == DEVICES[0][3])).scalar_one()
    if not first.cases:
        case = case_svc.open_case(session, tech.id, first.id, 'Cracked screen', 'Screen cracked after a drop',
                                  description='Customer reports touch not responding in the lower third')
        rnd = case.rounds[0]
        case_svc.update_round(session, rnd.id, case_svc.RoundUpdate(diagnosis='Display assembly damaged', cost=749, warranty_days=90))
        for status in DEMO_FLOW:
            case_svc.transition_round(session, tech.id, rnd.id, status, location='Service centre')
        shipment = shipment_svc.create_shipment(session, tech.id, rnd.id, Shipment.DIRECTION_OUTBOUND,
                                                carrier='DHL', tracking_number='DEMO0001')
        shipment_svc.update_shipment_status(session, shipment.id, Shipment.STATUS_IN_TRANSIT, 'Sorting hub')
        shipment_svc.update_shipment_status(session, shipment.id, Shipment.STATUS_SIGNED, 'Customer address')
        created['cases'] += 1
    return created


def print_users(session):
    users = session.execute(select(User).order_by(User.id)).scalars().all()
    name_w = max((len(u.username) for u in users), default=8)
    print(f"{'User'.ljust(name_w)} | Role     | Capabilities")
    print('-' * (name_w + 40))
    for u in users:
        caps = perm_store.list_grants(session, u.id) if u.role == ROLE_STAFF else []
        print(f"{u.username.ljust(name_w)} | {u.role.ljust(8)} | {', '.join(caps)}")


def parse_args():
    p = argparse.ArgumentParser(
        description='Seed demo data for servicetrack',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""Examples:\n  seed normally: seed_demo.py\n  dry run: seed_demo.py --dry-run\n  show users: seed_demo.py --show-users\n"""),
    )
    p.add_argument('--dry-run', action='store_true', help='Seed into a throwaway in-memory database instead')
    p.add_argument('--show-users', action='store_true', help='Print identities and capabilities after seeding')
    return p.parse_args()


def main():
    args = parse_args()
    # Services commit their own transactions, so a dry run targets a scratch database
    config = {'DATABASE_URL': 'sqlite+pysqlite:///:memory:'} if args.dry_run else None
    app = create_app(config)
    with app.app_context():
        session = get_db()
        try:
            session.execute(text('SELECT 1 FROM users LIMIT 1'))
        except Exception:
            session.rollback()
            # Auto-create schema for bootstrap; in real env prefer alembic upgrade
            import_models().metadata.create_all(session.get_bind())
        try:
            created = seed(session)
            prefix = '[DRY-RUN] (scratch database) would create' if args.dry_run else '[DONE] Created'
            print(f"{prefix} users: {created['users']}, devices: {created['devices']}, cases: {created['cases']}")
            if args.show_users:
                print('\nUsers:')
                print_users(session)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


if __name__ == '__main__':
    main()
