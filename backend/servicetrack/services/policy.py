from __future__ import annotations
"""Access decisions for every request.

The per-request ``AccessContext`` carries the actor and the staff capability set,
loaded at most once per request. It is passed explicitly to ``authorize`` and is
never stored on the User row or any other shared object.

Rules:
  ADMIN     always allowed
  CUSTOMER  allowed when no owning customer is given or it is the actor's own
  STAFF     allowed when the granted set intersects the required set (any of)
  other     denied (INVALID_ROLE); no actor at all is Unauthenticated
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Tuple, Union
from sqlalchemy import select
from sqlalchemy.orm import Session

from servicetrack.constants.permissions import ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER
from servicetrack.errors import (
    Forbidden, Unauthenticated, ACCESS_DENIED, MISSING_PERMISSION, INVALID_ROLE, UNAUTHENTICATED,
)
from servicetrack.models.authz import User

Required = Union[str, Iterable[str]]


@dataclass(frozen=True)
class Actor:
    id: int
    role: str
    customer_id: Optional[int] = None
    username: Optional[str] = None


class AccessContext:
    def __init__(self, actor: Optional[Actor], session: Optional[Session] = None,
                 capabilities: Optional[Iterable[str]] = None):
        self.actor = actor
        self._session = session
        self._capabilities: Optional[FrozenSet[str]] = frozenset(capabilities) if capabilities is not None else None

    @property
    def capabilities(self) -> FrozenSet[str]:
        if self._capabilities is None:
            if self.actor is None or self.actor.role != ROLE_STAFF or self._session is None:
                self._capabilities = frozenset()
            else:
                from servicetrack.services.permissions import list_grants
                self._capabilities = frozenset(list_grants(self._session, self.actor.id))
        return self._capabilities

    @property
    def capabilities_loaded(self) -> bool:
        return self._capabilities is not None

    @property
    def is_admin(self) -> bool:
        return self.actor is not None and self.actor.role == ROLE_ADMIN


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    missing: Tuple[str, ...] = field(default_factory=tuple)
    message: Optional[str] = None

    def raise_for_denial(self):
        if self.allowed:
            return
        if self.reason == UNAUTHENTICATED:
            raise Unauthenticated(self.message)
        details = {'required_any': list(self.missing)} if self.missing else None
        raise Forbidden(self.message, reason=self.reason or ACCESS_DENIED, details=details)


def _normalize(required: Required) -> Tuple[str, ...]:
    if isinstance(required, str):
        return (required,)
    return tuple(required)


def check_access(ctx: Optional[AccessContext], required: Required = (), customer_id: Optional[int] = None) -> Decision:
    """Decide without raising."""
    actor = ctx.actor if ctx is not None else None
    if actor is None:
        return Decision(False, UNAUTHENTICATED, message='Authentication required')
    if actor.role == ROLE_ADMIN:
        return Decision(True)
    if actor.role == ROLE_CUSTOMER:
        if customer_id is not None and customer_id != actor.customer_id:
            return Decision(False, ACCESS_DENIED, message='Access denied: not your resource')
        return Decision(True)
    if actor.role == ROLE_STAFF:
        wanted = _normalize(required)
        if ctx.capabilities.intersection(wanted):
            return Decision(True)
        return Decision(False, MISSING_PERMISSION, missing=wanted, message=f"Missing permission: {' or '.join(wanted)}")
    return Decision(False, INVALID_ROLE, message='Invalid role')


def authorize(ctx: Optional[AccessContext], required: Required = (), customer_id: Optional[int] = None) -> Decision:
    decision = check_access(ctx, required, customer_id)
    decision.raise_for_denial()
    return decision


def has_permission(ctx: Optional[AccessContext], required: Required, customer_id: Optional[int] = None) -> bool:
    """Non-raising hint for clients; enforcement always goes through authorize()."""
    return check_access(ctx, required, customer_id).allowed


def require_role(ctx: Optional[AccessContext], *roles: str):
    if ctx is None or ctx.actor is None:
        raise Unauthenticated()
    if ctx.actor.role not in roles:
        raise Forbidden(f"Required role: {' or '.join(roles)}", reason=ACCESS_DENIED)


def customer_filter(ctx: AccessContext) -> Optional[int]:
    """Customer id every query must be scoped to, or None for unscoped roles."""
    if ctx.actor is not None and ctx.actor.role == ROLE_CUSTOMER:
        return ctx.actor.customer_id
    return None


def load_access_context(session: Session, user_id) -> AccessContext:
    """Build the request context from a token identity, re-reading role and customer link."""
    try:
        uid = int(user_id)
    except (TypeError, ValueError):
        raise Unauthenticated('Invalid token identity')
    user = session.execute(select(User).where(User.id == uid)).scalar_one_or_none()
    if not user or not user.is_active:
        raise Unauthenticated('Account not found or disabled')
    customer_id = user.customer.id if user.role == ROLE_CUSTOMER and user.customer else None
    return AccessContext(Actor(user.id, user.role, customer_id, user.username), session)


__all__ = [
    'Actor', 'AccessContext', 'Decision', 'check_access', 'authorize', 'has_permission',
    'require_role', 'customer_filter', 'load_access_context',
]
