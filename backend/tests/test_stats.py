from datetime import datetime
import pytest
from servicetrack.models.authz import User
from servicetrack.services import cases as case_svc
from servicetrack.services.stats import fleet_stats, device_overview
from tests.test_lifecycle_helpers import jwt_headers, assert_error
from tests.test_utils_seed import ensure_customer, create_device, ensure_user, open_case, walk_round


@pytest.fixture()
def fleet(session, admin, technician):
    """Two cases: A returned after delivery then reworked and still open, B delivered and closed."""
    ensure_user('idle', 'STAFF')
    gone = ensure_user('gone', 'STAFF')
    gone.status = User.STATUS_DISABLED
    session.commit()
    device = create_device(ensure_customer('Fleet Owner'))

    a = open_case(device, technician, title='A', issue='a', now=datetime(2024, 1, 1, 9, 0))
    a1 = walk_round(a.rounds[0].id, technician, 'DELIVERED', 'RETURNED')
    a1.completed_at = datetime(2024, 1, 4, 9, 0)
    session.commit()
    case_svc.open_rework_round(session, technician.id, a.id, 'again')

    b = open_case(device, technician, title='B', issue='b', now=datetime(2024, 1, 10, 9, 0))
    b1 = walk_round(b.rounds[0].id, technician, 'RECEIVED', 'REPAIRING', 'DELIVERED')
    b1.completed_at = datetime(2024, 1, 12, 9, 0)
    session.commit()
    case_svc.close_case(session, b.id)
    return {'a': a, 'b': b, 'device': device}


def test_fleet_stats(session, technician, fleet):
    session.expire_all()
    assert [(r.round_no, r.status) for r in sorted(fleet['a'].rounds, key=lambda r: r.round_no)] == [(1, 'RETURNED'), (2, 'PENDING')]
    stats = fleet_stats(session, now=datetime(2024, 1, 12))
    assert stats['total_cases'] == 2
    assert stats['status_distribution'] == {'PENDING': 1, 'DELIVERED': 1}
    assert stats['average_resolution_days'] == 2.5
    assert stats['rework_cases'] == 1
    assert stats['rework_rate'] == 50.0
    assert stats['staff_performance'] == [
        {'id': technician.id, 'username': 'tech', 'operations_count': 8},
        {'id': session.query(User).filter_by(username='idle').one().id, 'username': 'idle', 'operations_count': 0},
    ]
    assert stats['summary'] == {
        'recent_cases': 1,
        'active_cases': 1,
        'total_users': 4,
        'active_staff': 2,
        'total_customers': 1,
    }


def test_fleet_stats_date_window(session, technician, fleet):
    stats = fleet_stats(session, date_from=datetime(2024, 1, 5))
    assert stats['total_cases'] == 1
    assert stats['status_distribution'] == {'DELIVERED': 1}
    assert stats['average_resolution_days'] == 2.0
    assert (stats['rework_cases'], stats['rework_rate']) == (0, 0.0)
    # Round 1 of case A was logged before the window opened
    assert stats['staff_performance'][0]['operations_count'] == 7


def test_empty_fleet(session):
    stats = fleet_stats(session)
    assert stats['total_cases'] == 0
    assert stats['status_distribution'] == {}
    assert (stats['average_resolution_days'], stats['rework_rate']) == (0.0, 0.0)
    assert stats['staff_performance'] == []


def test_device_overview_follows_latest_items(session, technician, fleet):
    session.expire_all()
    overview = device_overview(fleet['device'])
    latest = overview['latest_case']
    assert latest['case_number'] == fleet['b'].case_number
    assert latest['status'] == 'DELIVERED' and latest['round_no'] == 1
    assert latest['closed_at'] is not None
    assert latest['is_rework'] is False and latest['tracking'] is None
    bare = device_overview(create_device(ensure_customer('Nobody')))
    assert 'latest_case' not in bare


def test_stats_route_is_admin_only(client, admin, technician, fleet):
    resp = client.get('/admin/reports/stats?date_from=2024-01-05', headers=jwt_headers(admin.id))
    assert resp.status_code == 200
    assert resp.get_json()['total_cases'] == 1
    assert_error(client.get('/admin/reports/stats', headers=jwt_headers(technician.id)), 403, 'FORBIDDEN')
    assert_error(client.get('/admin/reports/stats?date_from=soon', headers=jwt_headers(admin.id)), 400, 'VALIDATION_FAILED')
