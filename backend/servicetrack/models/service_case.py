from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime, Numeric, UniqueConstraint

from servicetrack.models.authz import Base
from servicetrack.utils.clock import utcnow


class ServiceCase(Base):
    __tablename__ = 'service_cases'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    device_id: Mapped[int] = mapped_column(ForeignKey('devices.id'), nullable=False, index=True)
    # CS + YYYYMMDD + 3-digit daily sequence
    case_number: Mapped[str] = mapped_column(String(16), unique=True, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    device = relationship('Device', back_populates='cases')
    rounds = relationship('ServiceRound', back_populates='case', order_by='ServiceRound.round_no')


class ServiceRound(Base):
    __tablename__ = 'service_rounds'
    # Status constants
    STATUS_PENDING = 'PENDING'
    STATUS_RECEIVED = 'RECEIVED'
    STATUS_DIAGNOSING = 'DIAGNOSING'
    STATUS_AWAITING_PARTS = 'AWAITING_PARTS'
    STATUS_REPAIRING = 'REPAIRING'
    STATUS_QA = 'QA'
    STATUS_READY_TO_SHIP = 'READY_TO_SHIP'
    STATUS_SHIPPING = 'SHIPPING'
    STATUS_DELIVERED = 'DELIVERED'
    STATUS_CLOSED = 'CLOSED'
    STATUS_RETURNED = 'RETURNED'
    STATUS_CANCELLED = 'CANCELLED'
    ALL_STATUSES = (
        STATUS_PENDING, STATUS_RECEIVED, STATUS_DIAGNOSING, STATUS_AWAITING_PARTS, STATUS_REPAIRING,
        STATUS_QA, STATUS_READY_TO_SHIP, STATUS_SHIPPING, STATUS_DELIVERED, STATUS_CLOSED,
        STATUS_RETURNED, STATUS_CANCELLED,
    )
    # Reaching one of these stamps completed_at (first time only)
    COMPLETING_STATUSES = (STATUS_DELIVERED, STATUS_CLOSED)
    # A further round may only follow a round left in one of these
    REWORK_ELIGIBLE_STATUSES = (STATUS_DELIVERED, STATUS_RETURNED, STATUS_CLOSED, STATUS_CANCELLED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    case_id: Mapped[int] = mapped_column(ForeignKey('service_cases.id'), nullable=False, index=True)
    round_no: Mapped[int] = mapped_column(Integer, nullable=False)
    issue: Mapped[str] = mapped_column(Text, nullable=False)
    diagnosis: Mapped[Optional[str]] = mapped_column(Text)
    resolution: Mapped[Optional[str]] = mapped_column(Text)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    warranty_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=STATUS_PENDING, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    case = relationship('ServiceCase', back_populates='rounds')
    events = relationship('StatusEvent', back_populates='round', order_by='StatusEvent.id')
    shipments = relationship('Shipment', back_populates='round', order_by='Shipment.id')

    __table_args__ = (UniqueConstraint('case_id', 'round_no', name='uq_case_round_no'),)


class StatusEvent(Base):
    """Append-only record of one status change on a round."""
    __tablename__ = 'status_events'
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    round_id: Mapped[int] = mapped_column(ForeignKey('service_rounds.id'), nullable=False, index=True)
    from_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    location: Mapped[Optional[str]] = mapped_column(String(128))
    operator_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    round = relationship('ServiceRound', back_populates='events')
    operator = relationship('User')
