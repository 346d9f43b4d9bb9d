import os, sys, pytest
# Ensure backend directory is on path so 'servicetrack' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from servicetrack import create_app, get_db, import_models

TEST_CONFIG = {
    'TESTING': True,
    'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
    'JWT_SECRET_KEY': 'test-secret-key-long-enough-for-hs256-signing',
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture()
def app_instance():
    # Fresh in-memory database per test; the app context stays pushed for the whole test
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        engine = get_db().get_bind()
        import_models().metadata.create_all(engine)
        yield app
    engine.dispose()


@pytest.fixture()
def client(app_instance):
    # Requests share the test's session; expire it so each request reads fresh rows like a new session would
    app_instance.before_request(lambda: get_db().expire_all())
    return app_instance.test_client()


@pytest.fixture()
def session(app_instance):
    return get_db()


@pytest.fixture()
def admin(session):
    from tests.test_utils_seed import ensure_user
    return ensure_user('admin', 'ADMIN')


@pytest.fixture()
def technician(session, admin):
    from tests.test_utils_seed import ensure_staff
    return ensure_staff('tech', 'Technician', granted_by=admin.id)


@pytest.fixture()
def customer_user(session):
    from tests.test_utils_seed import ensure_user
    return ensure_user('alice', 'CUSTOMER', customer_name='Alice')
