from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from servicetrack.constants.permissions import ALL_ROLES, ROLE_CUSTOMER
from servicetrack.errors import Conflict, NotFound, ValidationFailed
from servicetrack.models.authz import User
from servicetrack.models.customer import Customer
from servicetrack.utils.log import get_logger
from servicetrack.utils.patch import Patch, UNSET
from servicetrack.utils.tx import transaction
from servicetrack.utils.validation import validate_status

logger = get_logger('users')

USERNAME_MIN, USERNAME_MAX = 3, 50
PASSWORD_MIN = 6


def _check_username(username):
    if not isinstance(username, str) or not (USERNAME_MIN <= len(username) <= USERNAME_MAX):
        raise ValidationFailed('username invalid', details={'username': f'{USERNAME_MIN}-{USERNAME_MAX} characters'})
    return username


def _check_password(password):
    if not isinstance(password, str) or len(password) < PASSWORD_MIN:
        raise ValidationFailed('password invalid', details={'password': f'at least {PASSWORD_MIN} characters'})
    return password


def _check_email(email):
    if email is not None and (not isinstance(email, str) or '@' not in email):
        raise ValidationFailed('email invalid', details={'email': 'must be an email address'})
    return email


def _username_taken(session: Session, username: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(User.id).where(User.username == username)
    if exclude_id is not None:
        stmt = stmt.where(User.id != exclude_id)
    return session.execute(stmt).first() is not None


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise NotFound('User not found')
    return user


def create_user(session: Session, username: str, password: str, role: str, email: Optional[str] = None,
                phone: Optional[str] = None, customer_name: Optional[str] = None,
                customer_address: Optional[str] = None) -> User:
    """Create an identity; CUSTOMER identities get their profile in the same transaction."""
    _check_username(username)
    _check_password(password)
    validate_status(role, ALL_ROLES, 'role')
    _check_email(email)
    if _username_taken(session, username):
        raise Conflict('Username already exists', error_code='USERNAME_EXISTS')
    try:
        with transaction(session):
            user = User(username=username, role=role, email=email, phone=phone, password_hash='')
            user.set_password(password)
            session.add(user)
            session.flush()
            if role == ROLE_CUSTOMER:
                session.add(Customer(
                    user_id=user.id, name=customer_name or username, phone=phone, email=email,
                    address=customer_address,
                ))
    except IntegrityError:
        raise Conflict('Username already exists', error_code='USERNAME_EXISTS')
    logger.info('user %s created with role %s', username, role)
    return user


@dataclass
class UserUpdate(Patch):
    REQUIRED = ('username', 'password', 'status')
    username: Any = UNSET
    password: Any = UNSET
    email: Any = UNSET
    phone: Any = UNSET
    status: Any = UNSET

    @classmethod
    def from_payload(cls, data):
        patch = super().from_payload(data)
        if patch.username not in (UNSET, None):
            _check_username(patch.username)
        if patch.password not in (UNSET, None):
            _check_password(patch.password)
        if patch.email is not UNSET:
            _check_email(patch.email)
        if patch.status not in (UNSET, None):
            validate_status(patch.status, User.ALL_STATUSES)
        return patch


def update_user(session: Session, user_id: int, patch: UserUpdate,
                acting_user_id: Optional[int] = None) -> Tuple[User, Dict[str, Any]]:
    """Partial update; the password is re-hashed and never echoed in the change set."""
    changes = patch.validate()
    if user_id == acting_user_id and changes.get('status') == User.STATUS_DISABLED:
        raise ValidationFailed('Cannot disable your own account', details={'id': 'self'})
    user = get_user(session, user_id)
    new_name = changes.get('username')
    if new_name and new_name != user.username and _username_taken(session, new_name, user.id):
        raise Conflict('Username already exists', error_code='USERNAME_EXISTS')
    try:
        with transaction(session):
            for key, value in changes.items():
                if key == 'password':
                    user.set_password(value)
                else:
                    setattr(user, key, value)
    except IntegrityError:
        raise Conflict('Username already exists', error_code='USERNAME_EXISTS')
    return user, changes


def disable_user(session: Session, user_id: int, acting_user_id: int) -> User:
    if user_id == acting_user_id:
        raise ValidationFailed('Cannot disable your own account', details={'id': 'self'})
    user = get_user(session, user_id)
    with transaction(session):
        user.status = User.STATUS_DISABLED
    logger.info('user %s disabled by %s', user.username, acting_user_id)
    return user


def list_users(session: Session, role: Optional[str] = None, status: Optional[str] = None):
    """Query of identities newest first; disabled ones are included unless filtered."""
    q = session.query(User)
    if role:
        q = q.filter(User.role == validate_status(role, ALL_ROLES, 'role'))
    if status:
        q = q.filter(User.status == validate_status(status, User.ALL_STATUSES))
    return q.order_by(User.created_at.desc(), User.id.desc())


__all__ = ['get_user', 'create_user', 'UserUpdate', 'update_user', 'disable_user', 'list_users']
