import pytest
from servicetrack.constants.permissions import CASE_READ_ALL, CASE_WRITE, DEVICE_READ, SHIPMENT_READ
from servicetrack.errors import NotFound, ValidationFailed
from servicetrack.models.authz import StaffPermission
from servicetrack.services import permissions as perm_store
from tests.test_utils_seed import ensure_user


def test_grant_all_replaces_whole_set(session, admin):
    staff = ensure_user('replace_me', 'STAFF')
    perm_store.grant_all(session, staff.id, [CASE_READ_ALL, CASE_WRITE], admin.id)
    before = perm_store.grant_all(session, staff.id, [DEVICE_READ], admin.id)
    assert before == [CASE_READ_ALL, CASE_WRITE]
    assert perm_store.list_grants(session, staff.id) == [DEVICE_READ]
    row = session.query(StaffPermission).filter_by(user_id=staff.id).one()
    assert row.granted_by == admin.id


def test_grant_all_dedupes_and_accepts_empty(session, admin):
    staff = ensure_user('dedupe', 'STAFF')
    perm_store.grant_all(session, staff.id, [DEVICE_READ, DEVICE_READ, SHIPMENT_READ], admin.id)
    assert perm_store.list_grants(session, staff.id) == [DEVICE_READ, SHIPMENT_READ]
    perm_store.grant_all(session, staff.id, [], admin.id)
    assert perm_store.list_grants(session, staff.id) == []


@pytest.mark.parametrize('role', ['ADMIN', 'CUSTOMER'])
def test_only_staff_may_hold_grants(session, admin, role):
    target = ensure_user(f'not_staff_{role.lower()}', role)
    with pytest.raises(ValidationFailed) as exc:
        perm_store.grant_all(session, target.id, [CASE_WRITE], admin.id)
    assert exc.value.error_code == 'INVALID_TARGET'
    assert perm_store.list_grants(session, target.id) == []


def test_unknown_capability_and_unknown_user(session, admin):
    staff = ensure_user('typo', 'STAFF')
    with pytest.raises(ValidationFailed) as exc:
        perm_store.grant_all(session, staff.id, ['CASE_DELETE'], admin.id)
    assert exc.value.details == {'capabilities': ['CASE_DELETE']}
    with pytest.raises(NotFound):
        perm_store.grant_all(session, 4242, [CASE_WRITE], admin.id)


def test_failed_replacement_keeps_previous_set(session, admin, monkeypatch):
    staff = ensure_user('atomic', 'STAFF')
    perm_store.grant_all(session, staff.id, [CASE_READ_ALL, CASE_WRITE], admin.id)

    def exploding(obj):
        raise RuntimeError('insert failed')

    # Delete has already run when the insert blows up; the rollback must restore it
    monkeypatch.setattr(session, 'add', exploding)
    with pytest.raises(RuntimeError):
        perm_store.grant_all(session, staff.id, [DEVICE_READ], admin.id)
    monkeypatch.undo()
    assert perm_store.list_grants(session, staff.id) == [CASE_READ_ALL, CASE_WRITE]
