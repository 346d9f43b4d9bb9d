from servicetrack.errors import Forbidden, ValidationFailed, MISSING_PERMISSION, error_payload
from tests.test_lifecycle_helpers import jwt_headers, assert_error


def test_unknown_path_returns_error_json(client):
    resp = client.get('/non-existent-path')
    # Flask default 404 should be wrapped by error handler
    err = assert_error(resp, 404, 'NOT_FOUND')
    assert 'detail' in err


def test_wrong_method_is_a_validation_failure(client):
    assert_error(client.put('/healthz'), 405, 'VALIDATION_FAILED')


def test_error_payload_carries_reason_code_and_details():
    body = error_payload(Forbidden('Missing permission: AUDIT_READ', reason=MISSING_PERMISSION,
                                   details={'required_any': ['AUDIT_READ']}))['error']
    assert body == {
        'status': 403, 'title': 'Forbidden', 'kind': 'FORBIDDEN', 'detail': 'Missing permission: AUDIT_READ',
        'reason': 'MISSING_PERMISSION', 'details': {'required_any': ['AUDIT_READ']},
    }
    body = error_payload(ValidationFailed('bad', error_code='INVALID_TARGET'))['error']
    assert body['code'] == 'INVALID_TARGET' and 'details' not in body
    assert error_payload(ValidationFailed())['error']['code'] == 'VALIDATION_ERROR'


def test_token_problems_are_unauthenticated(client):
    assert_error(client.get('/auth/me'), 401, 'UNAUTHENTICATED')
    assert_error(client.get('/auth/me', headers={'Authorization': 'Bearer not.a.jwt'}), 401, 'UNAUTHENTICATED')
    # Token for an identity that does not exist
    assert_error(client.get('/auth/me', headers=jwt_headers(31337)), 401, 'UNAUTHENTICATED')


def test_internal_error_shape(client, technician, monkeypatch):
    import servicetrack.routes.staff as staff_mod

    def boom(*a, **k):
        raise RuntimeError('explode')

    monkeypatch.setattr(staff_mod.case_svc, 'list_cases', boom)
    resp = client.get('/staff/cases', headers=jwt_headers(technician.id))
    err = assert_error(resp, 500, 'INTERNAL')
    assert err['title'] == 'Internal Server Error'
    # Internal details never leak
    assert 'explode' not in err['detail']
    # The session is usable again afterwards
    monkeypatch.undo()
    assert client.get('/staff/cases', headers=jwt_headers(technician.id)).status_code == 200
