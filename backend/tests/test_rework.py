import pytest
from servicetrack.errors import Conflict, NotFound, ValidationFailed
from servicetrack.models.audit import AuditLog
from servicetrack.models.service_case import ServiceRound
from servicetrack.services import cases as case_svc
from tests.test_lifecycle_helpers import jwt_headers, assert_error, assert_transition, create_case_and_assert
from tests.test_utils_seed import ensure_customer, create_device, open_case, walk_round


@pytest.fixture()
def case(session, technician):
    return open_case(create_device(ensure_customer('Noor Haddad')), technician)


def test_flags_track_round_count(session, technician, case):
    assert case_svc.case_flags(case) == {'round_count': 1, 'is_rework': False, 'multiple_reworks': False}
    walk_round(case.rounds[0].id, technician, 'DELIVERED')
    second = case_svc.open_rework_round(session, technician.id, case.id, 'Screen flickers again')
    assert second.round_no == 2 and second.status == 'PENDING'
    assert case_svc.case_flags(case) == {'round_count': 2, 'is_rework': True, 'multiple_reworks': False}
    walk_round(second.id, technician, 'RETURNED')
    third = case_svc.open_rework_round(session, technician.id, case.id, 'Still flickering')
    assert third.round_no == 3
    assert case_svc.case_flags(case) == {'round_count': 3, 'is_rework': True, 'multiple_reworks': True}
    assert case_svc.latest_round(case.rounds).id == third.id


@pytest.mark.parametrize('status', ['PENDING', 'RECEIVED', 'REPAIRING', 'SHIPPING'])
def test_rework_needs_finished_latest_round(session, technician, case, status):
    if status != 'PENDING':
        walk_round(case.rounds[0].id, technician, status)
    with pytest.raises(ValidationFailed) as exc:
        case_svc.open_rework_round(session, technician.id, case.id, 'Again')
    assert exc.value.details == {'status': status}
    assert session.query(ServiceRound).filter_by(case_id=case.id).count() == 1


@pytest.mark.parametrize('status', ['DELIVERED', 'RETURNED', 'CLOSED', 'CANCELLED'])
def test_rework_allowed_after_terminal_statuses(session, technician, case, status):
    walk_round(case.rounds[0].id, technician, status)
    rnd = case_svc.open_rework_round(session, technician.id, case.id, 'Again')
    assert rnd.round_no == 2
    assert [(e.from_status, e.to_status) for e in rnd.events] == [(None, 'PENDING')]


def test_rework_keeps_case_closed_stamp(session, technician, case):
    walk_round(case.rounds[0].id, technician, 'DELIVERED')
    closed, _ = case_svc.close_case(session, case.id)
    stamp = closed.closed_at
    case_svc.open_rework_round(session, technician.id, case.id, 'Came back')
    assert case_svc.get_case(session, case.id).closed_at == stamp


def test_rework_round_number_race_is_a_conflict(session, technician, case, monkeypatch):
    walk_round(case.rounds[0].id, technician, 'DELIVERED')
    original = case_svc._new_round

    def racing(session_, case_id, round_no, issue, actor_id, now):
        # Another writer grabbed the same number first
        session_.add(ServiceRound(case_id=case_id, round_no=round_no, issue='racer', started_at=now))
        session_.flush()
        return original(session_, case_id, round_no, issue, actor_id, now)

    monkeypatch.setattr(case_svc, '_new_round', racing)
    with pytest.raises(Conflict) as exc:
        case_svc.open_rework_round(session, technician.id, case.id, 'Again')
    assert exc.value.error_code == 'ROUND_CONFLICT'
    assert session.query(ServiceRound).filter_by(case_id=case.id).count() == 1


def test_rework_input_errors(session, technician, case):
    with pytest.raises(ValidationFailed):
        case_svc.open_rework_round(session, technician.id, case.id, '')
    with pytest.raises(NotFound):
        case_svc.open_rework_round(session, technician.id, 777, 'Again')


def test_rework_via_api(client, session, technician):
    device = create_device(ensure_customer('Ray Holt'))
    headers = jwt_headers(technician.id)
    case = create_case_and_assert(client, device.id, headers)
    early = client.post(f"/staff/cases/{case['id']}/rounds", json={'issue': 'Again'}, headers=headers)
    assert_error(early, 400, 'VALIDATION_FAILED')
    assert_transition(client, case['latest_round']['id'], headers, 'DELIVERED')
    resp = client.post(f"/staff/cases/{case['id']}/rounds", json={'issue': 'Again'}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    assert resp.get_json()['round_no'] == 2
    detail = client.get(f"/staff/cases/{case['id']}", headers=headers).get_json()
    assert detail['is_rework'] is True and detail['round_count'] == 2
    assert [r['round_no'] for r in detail['rounds']] == [2, 1]
    assert detail['latest_round']['round_no'] == 2
    entry = session.query(AuditLog).filter_by(action='CREATE_ROUND').one()
    assert entry.details == {'case_id': case['id'], 'round_no': 2}
