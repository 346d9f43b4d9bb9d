from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional, Dict, Any
import os

from servicetrack.errors import Unauthenticated, Internal, error_payload
from servicetrack.utils.log import configure_logging

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config['JWT_SECRET_KEY'] = os.getenv('JWT_SECRET_KEY', 'dev-secret-change-me-before-deploying')
    app.config['DATABASE_URL'] = os.getenv('DATABASE_URL', 'sqlite:///dev.db')
    app.config['JWT_ACCESS_TOKEN_EXPIRES'] = timedelta(minutes=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_MINUTES', '480')))
    app.config['LOG_LEVEL'] = os.getenv('LOG_LEVEL', 'INFO')
    app.config['LOG_JSON'] = os.getenv('LOG_JSON', '0') == '1'
    app.config['ROUND_TRANSITION_POLICY'] = os.getenv('ROUND_TRANSITION_POLICY', 'open')
    app.config['CASE_NUMBER_MAX_ATTEMPTS'] = int(os.getenv('CASE_NUMBER_MAX_ATTEMPTS', '5'))

    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    logger = configure_logging(app.config['LOG_LEVEL'], app.config['LOG_JSON'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))
    import_models()

    jwt.init_app(app)
    _register_jwt_handlers()

    from .routes.auth import auth_bp
    from .routes.admin import admin_bp
    from .routes.staff import staff_bp
    from .routes.me import me_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(staff_bp, url_prefix='/staff')
    app.register_blueprint(me_bp, url_prefix='/me')

    @app.teardown_appcontext
    def _release_session(exc=None):
        SessionLocal.remove()

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            if (e.code or 500) >= 500:
                SessionLocal.rollback()
            return error_payload(e), e.code
        # Unhandled exception: whatever the request left pending must not leak into the next one
        logger.exception('Unhandled exception')
        SessionLocal.rollback()
        return error_payload(Internal()), 500

    logger.debug('servicetrack app created (db=%s, transitions=%s)', db_url, app.config['ROUND_TRANSITION_POLICY'])
    return app


def import_models():
    """Import every model module so Base.metadata and string relationships resolve."""
    import servicetrack.models.authz  # noqa: F401
    import servicetrack.models.customer  # noqa: F401
    import servicetrack.models.service_case  # noqa: F401
    import servicetrack.models.shipment  # noqa: F401
    import servicetrack.models.audit  # noqa: F401
    from servicetrack.models.authz import Base
    return Base


def _register_jwt_handlers():
    @jwt.unauthorized_loader
    def _missing_token(reason):
        return error_payload(Unauthenticated(reason)), 401

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return error_payload(Unauthenticated(reason)), 401

    @jwt.expired_token_loader
    def _expired_token(jwt_header, jwt_payload):
        return error_payload(Unauthenticated('Token has expired')), 401


def get_db():
    return SessionLocal()
