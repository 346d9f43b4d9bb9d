import pytest
from servicetrack.errors import NotFound, ValidationFailed
from servicetrack.models.audit import AuditLog
from servicetrack.models.service_case import StatusEvent
from servicetrack.services import cases as case_svc
from tests.test_lifecycle_helpers import jwt_headers, assert_error, assert_transition, create_case_and_assert
from tests.test_utils_seed import ensure_customer, create_device, ensure_staff, open_case, walk_round


@pytest.fixture()
def round_one(session, technician):
    device = create_device(ensure_customer('Lee Park'))
    return open_case(device, technician).rounds[0]


def test_transition_appends_event_and_moves_status(session, technician, round_one):
    rnd, event = case_svc.transition_round(session, technician.id, round_one.id, 'RECEIVED',
                                           notes='Front desk', location='Store 4')
    assert rnd.status == 'RECEIVED'
    assert (event.from_status, event.to_status, event.location) == ('PENDING', 'RECEIVED', 'Store 4')
    history = session.query(StatusEvent).filter_by(round_id=rnd.id).order_by(StatusEvent.id).all()
    assert [e.to_status for e in history] == ['PENDING', 'RECEIVED']
    assert history[-1].to_status == rnd.status


def test_completed_at_is_stamped_once(session, technician, round_one):
    rnd = walk_round(round_one.id, technician, 'RECEIVED', 'REPAIRING', 'DELIVERED')
    stamp = rnd.completed_at
    assert stamp is not None
    rnd = walk_round(round_one.id, technician, 'CLOSED')
    assert rnd.completed_at == stamp
    # Moving back out of a completing status keeps the stamp too
    rnd = walk_round(round_one.id, technician, 'RETURNED')
    assert rnd.completed_at == stamp


def test_open_policy_allows_any_jump(session, technician, round_one):
    rnd = walk_round(round_one.id, technician, 'DELIVERED', 'PENDING')
    assert rnd.status == 'PENDING'


def test_strict_policy_rejects_and_leaves_round_untouched(session, technician, round_one):
    strict = case_svc.round_policy('strict')
    with pytest.raises(ValidationFailed) as exc:
        case_svc.transition_round(session, technician.id, round_one.id, 'DELIVERED', policy=strict)
    assert exc.value.details == {'from': 'PENDING', 'to': 'DELIVERED'}
    assert case_svc.get_round(session, round_one.id).status == 'PENDING'
    assert session.query(StatusEvent).filter_by(round_id=round_one.id).count() == 1
    rnd, _ = case_svc.transition_round(session, technician.id, round_one.id, 'RECEIVED', policy=strict)
    assert rnd.status == 'RECEIVED'


def test_unknown_status_and_round(session, technician, round_one):
    with pytest.raises(ValidationFailed):
        case_svc.transition_round(session, technician.id, round_one.id, 'LOST')
    with pytest.raises(NotFound):
        case_svc.transition_round(session, technician.id, 4040, 'RECEIVED')


def test_round_details_patch(session, technician, round_one):
    rnd, changes = case_svc.update_round(session, round_one.id, case_svc.RoundUpdate.from_payload(
        {'diagnosis': 'Water damage', 'cost': '120.50', 'warranty_days': 30}))
    assert str(rnd.cost) == '120.50' and rnd.warranty_days == 30
    assert set(changes) == {'diagnosis', 'cost', 'warranty_days'}
    rnd, _ = case_svc.update_round(session, round_one.id, case_svc.RoundUpdate.from_payload({'cost': None}))
    assert rnd.cost is None and rnd.diagnosis == 'Water damage'
    for bad in ({'cost': -5}, {'warranty_days': 0}, {'warranty_days': 'ten'}):
        with pytest.raises(ValidationFailed):
            case_svc.RoundUpdate.from_payload(bad)


# ---------- HTTP ----------

def test_status_route_writes_audit(client, session, technician):
    device = create_device(ensure_customer('Kim Ode'))
    headers = jwt_headers(technician.id)
    case = create_case_and_assert(client, device.id, headers)
    round_id = case['latest_round']['id']
    resp = assert_transition(client, round_id, headers, 'RECEIVED', location='Bench 2', notes='Logged')
    body = resp.get_json()
    assert body['event']['from_status'] == 'PENDING'
    assert body['event']['operator'] == {'id': technician.id, 'username': 'tech'}
    assert [e['to_status'] for e in body['round']['events']] == ['RECEIVED', 'PENDING']
    entry = session.query(AuditLog).filter_by(action='UPDATE_STATUS').one()
    assert entry.resource == 'ServiceRound' and entry.resource_id == str(round_id)
    assert entry.details == {'from': 'PENDING', 'to': 'RECEIVED', 'location': 'Bench 2'}
    assert entry.actor_user_id == technician.id


def test_status_route_honours_configured_policy(app_instance, client, session, technician):
    device = create_device(ensure_customer('Ivo Lind'))
    headers = jwt_headers(technician.id)
    round_id = create_case_and_assert(client, device.id, headers)['latest_round']['id']
    app_instance.config['ROUND_TRANSITION_POLICY'] = 'strict'
    resp = assert_transition(client, round_id, headers, 'DELIVERED', expected_status=400)
    err = assert_error(resp, 400, 'VALIDATION_FAILED', code='VALIDATION_ERROR')
    assert err['details'] == {'from': 'PENDING', 'to': 'DELIVERED'}
    assert session.query(AuditLog).filter_by(action='UPDATE_STATUS').count() == 0
    app_instance.config['ROUND_TRANSITION_POLICY'] = 'open'
    assert_transition(client, round_id, headers, 'DELIVERED')


def test_status_route_requires_case_write(client, admin, technician):
    device = create_device(ensure_customer('Ana Ruiz'))
    round_id = create_case_and_assert(client, device.id, jwt_headers(technician.id))['latest_round']['id']
    shipper = ensure_staff('shipper', caps=['SHIPMENT_WRITE'], granted_by=admin.id)
    resp = client.post(f'/staff/rounds/{round_id}/status', json={'to_status': 'RECEIVED'}, headers=jwt_headers(shipper.id))
    assert_error(resp, 403, 'FORBIDDEN', reason='MISSING_PERMISSION')
    # Admins pass every capability check
    assert_transition(client, round_id, jwt_headers(admin.id), 'RECEIVED')
    missing = client.post(f'/staff/rounds/{round_id}/status', json={}, headers=jwt_headers(admin.id))
    assert_error(missing, 400, 'VALIDATION_FAILED')


def test_round_patch_route_records_changes(client, session, technician):
    device = create_device(ensure_customer('Bo Yan'))
    headers = jwt_headers(technician.id)
    round_id = create_case_and_assert(client, device.id, headers)['latest_round']['id']
    resp = client.patch(f'/staff/rounds/{round_id}', json={'cost': 749, 'diagnosis': 'Display'}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()['cost'] == 749.0 and resp.get_json()['status'] == 'PENDING'
    entry = session.query(AuditLog).filter_by(action='UPDATE_ROUND').one()
    assert entry.details['changes']['cost'] == {'before': None, 'after': 749.0}


def test_full_repair_walk_ends_closed(app_instance, client, technician):
    device = create_device(ensure_customer('Mo Farr'))
    headers = jwt_headers(technician.id)
    case = create_case_and_assert(client, device.id, headers, title='Screen replacement', issue='Screen cracked')
    round_id = case['latest_round']['id']
    app_instance.config['ROUND_TRANSITION_POLICY'] = 'strict'
    patched = client.patch(f'/staff/rounds/{round_id}', json={'cost': 749, 'warranty_days': 90}, headers=headers)
    assert patched.status_code == 200 and patched.get_json()['cost'] == 749.0

    for status in ('RECEIVED', 'DIAGNOSING', 'REPAIRING', 'QA', 'READY_TO_SHIP', 'SHIPPING'):
        body = assert_transition(client, round_id, headers, status).get_json()
        assert body['round']['completed_at'] is None
    delivered = assert_transition(client, round_id, headers, 'DELIVERED').get_json()['round']['completed_at']
    assert delivered is not None
    closed = assert_transition(client, round_id, headers, 'CLOSED').get_json()['round']
    assert closed['completed_at'] == delivered

    detail = client.get(f"/staff/cases/{case['id']}", headers=headers).get_json()
    assert detail['round_count'] == 1 and detail['is_rework'] is False
    assert detail['latest_round']['status'] == 'CLOSED' and detail['latest_round']['cost'] == 749.0
    assert len(detail['rounds'][0]['events']) == 9
    # Closing the round does not close the case
    assert detail['closed_at'] is None
    closed_case = client.post(f"/staff/cases/{case['id']}/close", headers=headers).get_json()
    assert closed_case['closed_at'] is not None and closed_case['already_closed'] is False
    assert closed_case['latest_round']['completed_at'] == delivered
