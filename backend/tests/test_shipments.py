from datetime import datetime
import pytest
from servicetrack.errors import NotFound, ValidationFailed
from servicetrack.models.audit import AuditLog
from servicetrack.services import shipments as shipment_svc
from tests.test_lifecycle_helpers import jwt_headers, assert_error, create_case_and_assert
from tests.test_utils_seed import ensure_customer, create_device, ensure_staff, open_case


@pytest.fixture()
def round_one(session, technician):
    return open_case(create_device(ensure_customer('Mia Kovac')), technician).rounds[0]


def _ship(session, technician, round_one, **kw):
    return shipment_svc.create_shipment(session, technician.id, round_one.id, 'OUTBOUND',
                                        carrier='DHL', tracking_number='JD0001', **kw)


def test_create_shipment_starts_pending(session, technician, round_one):
    s = _ship(session, technician, round_one, estimated_arrival='2024-02-01T12:00:00Z')
    assert s.status == 'PENDING' and s.operator_id == technician.id
    assert s.estimated_arrival == datetime(2024, 2, 1, 12, 0)
    assert s.shipped_at is None and s.actual_arrival is None


def test_create_shipment_validates(session, technician, round_one):
    with pytest.raises(ValidationFailed):
        shipment_svc.create_shipment(session, technician.id, round_one.id, 'SIDEWAYS')
    with pytest.raises(NotFound):
        shipment_svc.create_shipment(session, technician.id, 5150, 'INBOUND')


def test_status_stamps_are_set_once(session, technician, round_one):
    s = _ship(session, technician, round_one)
    s = shipment_svc.update_shipment_status(session, s.id, 'IN_TRANSIT', 'Hub A')
    shipped = s.shipped_at
    assert shipped is not None and s.current_location == 'Hub A'
    s = shipment_svc.update_shipment_status(session, s.id, 'ARRIVED')
    arrived = s.actual_arrival
    assert arrived is not None and s.current_location == 'Hub A'
    s = shipment_svc.update_shipment_status(session, s.id, 'IN_TRANSIT')
    s = shipment_svc.update_shipment_status(session, s.id, 'SIGNED')
    assert (s.shipped_at, s.actual_arrival) == (shipped, arrived)


def test_explicit_arrival_wins(session, technician, round_one):
    s = _ship(session, technician, round_one)
    patch = shipment_svc.ShipmentUpdate.from_payload({'status': 'SIGNED', 'actual_arrival': '2024-03-01T08:00:00Z'})
    s, changes = shipment_svc.update_shipment(session, s.id, patch)
    assert s.actual_arrival == datetime(2024, 3, 1, 8, 0)
    assert set(changes) == {'status', 'actual_arrival'}


def test_patch_semantics(session, technician, round_one):
    s = _ship(session, technician, round_one, notes='Fragile')
    s, changes = shipment_svc.update_shipment(session, s.id, shipment_svc.ShipmentUpdate.from_payload({'current_location': 'Dock'}))
    assert changes == {'current_location': 'Dock'}
    assert s.notes == 'Fragile' and s.status == 'PENDING'
    s, _ = shipment_svc.update_shipment(session, s.id, shipment_svc.ShipmentUpdate.from_payload({'notes': None}))
    assert s.notes is None
    with pytest.raises(ValidationFailed):
        shipment_svc.update_shipment(session, s.id, shipment_svc.ShipmentUpdate.from_payload({'status': None}))
    with pytest.raises(ValidationFailed):
        shipment_svc.ShipmentUpdate.from_payload({'status': 'LOST'})
    with pytest.raises(NotFound):
        shipment_svc.update_shipment(session, 999, shipment_svc.ShipmentUpdate(notes='x'))


# ---------- HTTP ----------

def test_shipment_routes(client, session, admin, technician):
    device = create_device(ensure_customer('Olu Ade'))
    headers = jwt_headers(technician.id)
    case = create_case_and_assert(client, device.id, headers)
    round_id = case['latest_round']['id']
    resp = client.post('/staff/shipments', json={'round_id': round_id, 'direction': 'INBOUND', 'carrier': 'UPS'},
                       headers=headers)
    assert resp.status_code == 201, resp.get_json()
    shipment = resp.get_json()
    patched = client.patch(f"/staff/shipments/{shipment['id']}", json={'status': 'IN_TRANSIT'}, headers=headers)
    assert patched.status_code == 200
    assert patched.get_json()['shipped_at'] is not None

    listing = client.get('/staff/shipments?direction=INBOUND', headers=headers).get_json()
    assert [s['id'] for s in listing['data']] == [shipment['id']]
    assert listing['data'][0]['case_number'] == case['case_number']
    assert client.get('/staff/shipments?direction=OUTBOUND', headers=headers).get_json()['data'] == []

    detail = client.get(f'/staff/cases/{case["id"]}', headers=headers).get_json()
    assert detail['rounds'][0]['shipments'][0]['status'] == 'IN_TRANSIT'

    entry = session.query(AuditLog).filter_by(action='UPDATE_SHIPMENT').one()
    assert entry.details['changes']['status'] == {'before': 'PENDING', 'after': 'IN_TRANSIT'}
    assert session.query(AuditLog).filter_by(action='CREATE_SHIPMENT').one().details['carrier'] == 'UPS'


def test_shipment_routes_need_shipment_capabilities(client, admin, technician):
    device = create_device(ensure_customer('Pia Berg'))
    round_id = create_case_and_assert(client, device.id, jwt_headers(technician.id))['latest_round']['id']
    desk = ensure_staff('desk', caps=['CASE_READ_ALL', 'CASE_WRITE'], granted_by=admin.id)
    resp = client.post('/staff/shipments', json={'round_id': round_id, 'direction': 'INBOUND'}, headers=jwt_headers(desk.id))
    err = assert_error(resp, 403, 'FORBIDDEN', reason='MISSING_PERMISSION')
    assert err['details'] == {'required_any': ['SHIPMENT_WRITE']}
    assert_error(client.get('/staff/shipments', headers=jwt_headers(desk.id)), 403, 'FORBIDDEN')
    bad = client.post('/staff/shipments', json={'round_id': 'one', 'direction': 'INBOUND'}, headers=jwt_headers(technician.id))
    assert_error(bad, 400, 'VALIDATION_FAILED')
    assert_error(client.get('/staff/shipments/404', headers=jwt_headers(technician.id)), 404, 'NOT_FOUND')
