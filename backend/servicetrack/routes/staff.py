from __future__ import annotations
from flask import Blueprint, request, current_app
from servicetrack import get_db
from servicetrack.constants.permissions import (
    CASE_READ, CASE_WRITE, DEVICE_READ, DEVICE_WRITE, CUSTOMER_READ_ALL, CUSTOMER_WRITE,
    SHIPMENT_READ, SHIPMENT_WRITE, AuditAction,
)
from servicetrack.decorators.audit import audit_log
from servicetrack.decorators.auth import current_access, require_capability
from servicetrack.errors import ValidationFailed
from servicetrack.serializers import (
    case_json, customer_json, device_json, device_with_latest_json, event_json, round_json, shipment_json,
)
from servicetrack.services import cases as case_svc
from servicetrack.services import customers as customer_svc
from servicetrack.services import shipments as shipment_svc
from servicetrack.services.cases import newest_first
from servicetrack.utils.listing import apply_pagination, cached_list
from servicetrack.utils.validation import parse_datetime, require_fields

staff_bp = Blueprint('staff', __name__)


def _payload():
    return request.get_json(silent=True) or {}


def _int_arg(name):
    raw = request.args.get(name)
    if raw in (None, ''):
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailed(f'{name} must be int', details={name: 'must be int'})


def _int_field(data, name):
    value = data.get(name)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationFailed(f'{name} invalid', details={name: 'must be an integer id'})
    return value


def _latest_updated(rows):
    return max((r.updated_at for r in rows), default=None)


# --- Customers ---

@staff_bp.get('/customers')
@require_capability(CUSTOMER_READ_ALL)
def list_customers():
    q = customer_svc.list_customers(get_db(), request.args.get('search'))
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    data = []
    for c in rows:
        body = customer_json(c)
        body['device_count'] = len(c.devices)
        data.append(body)
    return cached_list(data, total, page, page_size, _latest_updated(rows))


@staff_bp.get('/customers/<int:customer_id>')
@require_capability(CUSTOMER_READ_ALL)
def get_customer(customer_id: int):
    customer = customer_svc.get_customer(get_db(), customer_id)
    body = customer_json(customer)
    body['user'] = {
        'id': customer.user.id, 'username': customer.user.username, 'status': customer.user.status,
    } if customer.user else None
    body['devices'] = [device_with_latest_json(d) for d in newest_first(customer.devices)]
    return body


@staff_bp.patch('/customers/<int:customer_id>')
@require_capability(CUSTOMER_WRITE)
@audit_log(AuditAction.UPDATE_CUSTOMER, resource='Customer',
           diff_keys=['name', 'phone', 'email', 'address'],
           pre_fetch=lambda a, kw: customer_json(customer_svc.get_customer(get_db(), kw['customer_id'])))
def update_customer(customer_id: int):
    patch = customer_svc.CustomerUpdate.from_payload(_payload())
    customer, _ = customer_svc.update_customer(get_db(), customer_id, patch)
    return customer_json(customer)


# --- Devices ---

@staff_bp.get('/devices')
@require_capability(DEVICE_READ)
def list_devices():
    q = customer_svc.list_devices(get_db(), request.args.get('search'), _int_arg('customer_id'))
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    data = []
    for d in rows:
        body = device_with_latest_json(d)
        body['customer'] = {'id': d.customer.id, 'name': d.customer.name, 'phone': d.customer.phone}
        data.append(body)
    return cached_list(data, total, page, page_size, _latest_updated(rows))


@staff_bp.post('/devices')
@require_capability(DEVICE_WRITE)
@audit_log(AuditAction.CREATE_DEVICE, resource='Device', meta_keys=['customer_id', 'brand', 'model'])
def create_device():
    data = _payload()
    require_fields(data, 'customer_id', 'brand', 'model')
    device = customer_svc.create_device(
        get_db(), _int_field(data, 'customer_id'), data['brand'], data['model'],
        **{k: data.get(k) for k in ('imei', 'serial', 'color', 'storage', 'notes')},
    )
    return device_json(device), 201


@staff_bp.get('/devices/<int:device_id>')
@require_capability(DEVICE_READ)
def get_device(device_id: int):
    device = customer_svc.get_device(get_db(), device_id)
    body = device_json(device)
    body['customer'] = customer_json(device.customer)
    body['cases'] = [case_json(c, detail=True) for c in newest_first(device.cases)]
    return body


@staff_bp.patch('/devices/<int:device_id>')
@require_capability(DEVICE_WRITE)
@audit_log(AuditAction.UPDATE_DEVICE, resource='Device',
           diff_keys=['brand', 'model', 'imei', 'serial', 'color', 'storage', 'notes'],
           pre_fetch=lambda a, kw: device_json(customer_svc.get_device(get_db(), kw['device_id'])))
def update_device(device_id: int):
    data = _payload()
    if 'customer_id' in data:
        raise ValidationFailed('Device ownership cannot be changed', details={'customer_id': 'read-only'})
    device, _ = customer_svc.update_device(get_db(), device_id, customer_svc.DeviceUpdate.from_payload(data))
    return device_json(device)


# --- Cases ---

@staff_bp.get('/cases')
@require_capability(*CASE_READ)
def list_cases():
    q = case_svc.list_cases(
        get_db(),
        search=request.args.get('search'),
        status=request.args.get('status'),
        customer_id=_int_arg('customer_id'),
        date_from=parse_datetime(request.args.get('date_from'), 'date_from'),
        date_to=parse_datetime(request.args.get('date_to'), 'date_to'),
    )
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    data = []
    for c in rows:
        body = case_json(c)
        body['device'] = {
            'id': c.device.id, 'brand': c.device.brand, 'model': c.device.model, 'imei': c.device.imei,
            'customer': {'id': c.device.customer.id, 'name': c.device.customer.name, 'phone': c.device.customer.phone},
        }
        data.append(body)
    return cached_list(data, total, page, page_size, _latest_updated(rows))


@staff_bp.post('/cases')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.CREATE_CASE, resource='ServiceCase', meta_keys=['case_number', 'device_id'])
def create_case():
    data = _payload()
    require_fields(data, 'device_id', 'title', 'issue')
    case = case_svc.open_case(
        get_db(), current_access().actor.id, _int_field(data, 'device_id'), data['title'], data['issue'],
        description=data.get('description'),
        max_attempts=current_app.config['CASE_NUMBER_MAX_ATTEMPTS'],
    )
    return case_json(case, detail=True), 201


@staff_bp.get('/cases/<int:case_id>')
@require_capability(*CASE_READ)
def get_case(case_id: int):
    case = case_svc.get_case(get_db(), case_id)
    body = case_json(case, detail=True)
    body['device'] = device_json(case.device)
    body['customer'] = customer_json(case.device.customer)
    return body


@staff_bp.patch('/cases/<int:case_id>')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.UPDATE_CASE, resource='ServiceCase', diff_keys=['title', 'description'],
           pre_fetch=lambda a, kw: case_json(case_svc.get_case(get_db(), kw['case_id'])))
def update_case(case_id: int):
    case, _ = case_svc.update_case(get_db(), case_id, case_svc.CaseUpdate.from_payload(_payload()))
    return case_json(case)


@staff_bp.post('/cases/<int:case_id>/close')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.CLOSE_CASE, resource='ServiceCase', meta_keys=['case_number', 'closed_at'])
def close_case(case_id: int):
    case, newly_closed = case_svc.close_case(get_db(), case_id)
    body = case_json(case)
    body['already_closed'] = not newly_closed
    return body


@staff_bp.post('/cases/<int:case_id>/rounds')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.CREATE_ROUND, resource='ServiceRound', meta_keys=['case_id', 'round_no'])
def open_round(case_id: int):
    data = _payload()
    require_fields(data, 'issue')
    rnd = case_svc.open_rework_round(get_db(), current_access().actor.id, case_id, data['issue'])
    return round_json(rnd, with_history=True), 201


# --- Rounds ---

@staff_bp.post('/rounds/<int:round_id>/status')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.UPDATE_STATUS, resource='ServiceRound', resource_id_arg='round_id',
           meta_builder=lambda data, a, kw: {
               'from': data['event']['from_status'], 'to': data['event']['to_status'],
               'location': data['event']['location'],
           })
def change_status(round_id: int):
    data = _payload()
    require_fields(data, 'to_status')
    policy = case_svc.round_policy(current_app.config['ROUND_TRANSITION_POLICY'])
    rnd, event = case_svc.transition_round(
        get_db(), current_access().actor.id, round_id, data['to_status'],
        notes=data.get('notes'), location=data.get('location'), policy=policy,
    )
    return {'round': round_json(rnd, with_history=True), 'event': event_json(event)}


@staff_bp.patch('/rounds/<int:round_id>')
@require_capability(CASE_WRITE)
@audit_log(AuditAction.UPDATE_ROUND, resource='ServiceRound',
           diff_keys=['diagnosis', 'resolution', 'cost', 'warranty_days'],
           pre_fetch=lambda a, kw: round_json(case_svc.get_round(get_db(), kw['round_id'])))
def update_round(round_id: int):
    patch = case_svc.RoundUpdate.from_payload(_payload())
    rnd, _ = case_svc.update_round(get_db(), round_id, patch)
    return round_json(rnd)


# --- Shipments ---

@staff_bp.get('/shipments')
@require_capability(SHIPMENT_READ)
def list_shipments():
    q = shipment_svc.list_shipments(
        get_db(), direction=request.args.get('direction'), status=request.args.get('status'),
        round_id=_int_arg('round_id'),
    )
    paged_q, total, page, page_size = apply_pagination(q)
    rows = paged_q.all()
    data = []
    for s in rows:
        body = shipment_json(s)
        body['case_number'] = s.round.case.case_number
        data.append(body)
    return cached_list(data, total, page, page_size, _latest_updated(rows))


@staff_bp.post('/shipments')
@require_capability(SHIPMENT_WRITE)
@audit_log(AuditAction.CREATE_SHIPMENT, resource='Shipment',
           meta_keys=['round_id', 'direction', 'carrier', 'tracking_number'])
def create_shipment():
    data = _payload()
    require_fields(data, 'round_id', 'direction')
    shipment = shipment_svc.create_shipment(
        get_db(), current_access().actor.id, _int_field(data, 'round_id'), data['direction'],
        carrier=data.get('carrier'), tracking_number=data.get('tracking_number'),
        origin=data.get('origin'), destination=data.get('destination'), notes=data.get('notes'),
        estimated_arrival=data.get('estimated_arrival'),
    )
    return shipment_json(shipment), 201


@staff_bp.get('/shipments/<int:shipment_id>')
@require_capability(SHIPMENT_READ)
def get_shipment(shipment_id: int):
    return shipment_json(shipment_svc.get_shipment(get_db(), shipment_id))


@staff_bp.patch('/shipments/<int:shipment_id>')
@require_capability(SHIPMENT_WRITE)
@audit_log(AuditAction.UPDATE_SHIPMENT, resource='Shipment',
           diff_keys=['status', 'current_location', 'notes', 'actual_arrival'],
           pre_fetch=lambda a, kw: shipment_json(shipment_svc.get_shipment(get_db(), kw['shipment_id'])))
def update_shipment(shipment_id: int):
    patch = shipment_svc.ShipmentUpdate.from_payload(_payload())
    shipment, _ = shipment_svc.update_shipment(get_db(), shipment_id, patch)
    return shipment_json(shipment)
