from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import or_
from sqlalchemy.orm import Session

from servicetrack.errors import NotFound, ValidationFailed
from servicetrack.models.customer import Customer, Device
from servicetrack.utils.log import get_logger
from servicetrack.utils.patch import Patch, UNSET
from servicetrack.utils.tx import transaction

logger = get_logger('customers')


def get_customer(session: Session, customer_id: int) -> Customer:
    customer = session.get(Customer, customer_id)
    if not customer:
        raise NotFound('Customer not found')
    return customer


def get_device(session: Session, device_id: int, customer_id: Optional[int] = None) -> Device:
    """Fetch a device; with ``customer_id`` a foreign device looks exactly like a missing one."""
    device = session.get(Device, device_id)
    if not device or (customer_id is not None and device.customer_id != customer_id):
        raise NotFound('Device not found')
    return device


def list_customers(session: Session, search: Optional[str] = None):
    q = session.query(Customer)
    if search:
        like = f'%{search}%'
        q = q.filter(or_(Customer.name.ilike(like), Customer.phone.ilike(like), Customer.email.ilike(like)))
    return q.order_by(Customer.created_at.desc(), Customer.id.desc())


def list_devices(session: Session, search: Optional[str] = None, customer_id: Optional[int] = None):
    q = session.query(Device).join(Customer, Device.customer_id == Customer.id)
    if search:
        like = f'%{search}%'
        q = q.filter(or_(
            Device.brand.ilike(like),
            Device.model.ilike(like),
            Device.imei.ilike(like),
            Device.color.ilike(like),
            Customer.name.ilike(like),
        ))
    if customer_id is not None:
        q = q.filter(Device.customer_id == customer_id)
    return q.order_by(Device.created_at.desc(), Device.id.desc())


@dataclass
class CustomerUpdate(Patch):
    REQUIRED = ('name',)
    name: Any = UNSET
    phone: Any = UNSET
    email: Any = UNSET
    address: Any = UNSET


@dataclass
class DeviceUpdate(Patch):
    REQUIRED = ('brand', 'model')
    brand: Any = UNSET
    model: Any = UNSET
    imei: Any = UNSET
    serial: Any = UNSET
    color: Any = UNSET
    storage: Any = UNSET
    notes: Any = UNSET


def update_customer(session: Session, customer_id: int, patch: CustomerUpdate) -> Tuple[Customer, Dict[str, Any]]:
    with transaction(session):
        customer = get_customer(session, customer_id)
        changes = patch.apply_to(customer)
    return customer, changes


def create_device(session: Session, customer_id: int, brand: str, model: str, **optional) -> Device:
    """Register a device; its owner is fixed from here on."""
    missing = [k for k, v in (('brand', brand), ('model', model)) if not v]
    if missing:
        raise ValidationFailed(f"{', '.join(missing)} required", details={k: 'required' for k in missing})
    extra = {k: optional.get(k) for k in ('imei', 'serial', 'color', 'storage', 'notes')}
    with transaction(session):
        get_customer(session, customer_id)
        device = Device(customer_id=customer_id, brand=brand, model=model, **extra)
        session.add(device)
    logger.info('device %s registered for customer=%s', device.id, customer_id)
    return device


def update_device(session: Session, device_id: int, patch: DeviceUpdate) -> Tuple[Device, Dict[str, Any]]:
    with transaction(session):
        device = get_device(session, device_id)
        changes = patch.apply_to(device)
    return device, changes


__all__ = [
    'get_customer', 'get_device', 'list_customers', 'list_devices', 'CustomerUpdate', 'DeviceUpdate',
    'update_customer', 'create_device', 'update_device',
]
