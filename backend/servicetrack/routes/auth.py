from flask import Blueprint, request
from flask_jwt_extended import create_access_token, jwt_required, get_jwt_identity
from sqlalchemy import select
from servicetrack import get_db
from servicetrack.constants.permissions import ALL_CAPABILITIES, ROLE_ADMIN, ROLE_STAFF, AuditAction
from servicetrack.errors import Unauthenticated, ValidationFailed
from servicetrack.models.authz import User
from servicetrack.serializers import user_json
from servicetrack.services.audit import record_audit
from servicetrack.services.policy import load_access_context, has_permission
from servicetrack.utils.log import get_logger

auth_bp = Blueprint('auth', __name__)
logger = get_logger('auth')


@auth_bp.post('/login')
def login():
    data = request.get_json(silent=True) or {}
    username = data.get('username'); password = data.get('password')
    if not username or not password:
        raise ValidationFailed('username & password required', details={k: 'required' for k in ('username', 'password') if not data.get(k)})
    session = get_db()
    user = session.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if not user or not user.is_active or not user.verify_password(password):
        logger.info('login failed for %s', username)
        record_audit(session, user.id if user else 0, AuditAction.LOGIN_FAILED, 'User',
                     user.id if user else None, {'username': username})
        raise Unauthenticated('invalid credentials')
    # JWT identity must be a string (flask-jwt-extended v4 requirement)
    token = create_access_token(identity=str(user.id), additional_claims={'role': user.role})
    record_audit(session, user.id, AuditAction.LOGIN, 'User', user.id)
    return {'access_token': token, 'user': user_json(user)}


@auth_bp.get('/me')
@jwt_required()
def me():
    session = get_db()
    ctx = load_access_context(session, get_jwt_identity())
    user = session.get(User, ctx.actor.id)
    body = user_json(user, sorted(ctx.capabilities))
    # UI hints only; every endpoint enforces on its own. Customers never pass the staff role gate
    staff_surface = ctx.actor.role in (ROLE_ADMIN, ROLE_STAFF)
    body['can'] = {cap: staff_surface and has_permission(ctx, cap) for cap in ALL_CAPABILITIES}
    return body
