from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import declarative_base, relationship, Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, UniqueConstraint, DateTime

from servicetrack.constants.permissions import ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER, ALL_ROLES
from servicetrack.utils.clock import utcnow

Base = declarative_base()


class User(Base):
    __tablename__ = 'users'
    ROLE_ADMIN = ROLE_ADMIN
    ROLE_STAFF = ROLE_STAFF
    ROLE_CUSTOMER = ROLE_CUSTOMER
    ALL_ROLES = ALL_ROLES
    # Identities are soft-disabled, never deleted (audit/history keep referencing them)
    STATUS_ACTIVE = 'ACTIVE'
    STATUS_DISABLED = 'DISABLED'
    ALL_STATUSES = (STATUS_ACTIVE, STATUS_DISABLED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(128))
    phone: Mapped[Optional[str]] = mapped_column(String(32))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_ACTIVE, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    customer = relationship('Customer', back_populates='user', uselist=False)
    grants = relationship('StaffPermission', back_populates='user', foreign_keys='StaffPermission.user_id')

    @property
    def is_active(self) -> bool:
        return self.status == self.STATUS_ACTIVE

    def set_password(self, raw: str):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(raw)

    def verify_password(self, raw: str) -> bool:
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, raw)


class StaffPermission(Base):
    """One capability granted to one staff identity."""
    __tablename__ = 'staff_permissions'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    capability: Mapped[str] = mapped_column(String(32), nullable=False)
    granted_by: Mapped[Optional[int]] = mapped_column(ForeignKey('users.id'), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    user = relationship('User', back_populates='grants', foreign_keys=[user_id])

    __table_args__ = (UniqueConstraint('user_id', 'capability', name='uq_staff_capability'),)
