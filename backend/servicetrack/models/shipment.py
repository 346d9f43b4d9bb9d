from __future__ import annotations
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy import Integer, String, Text, ForeignKey, DateTime

from servicetrack.models.authz import Base
from servicetrack.utils.clock import utcnow


class Shipment(Base):
    __tablename__ = 'shipments'
    DIRECTION_INBOUND = 'INBOUND'
    DIRECTION_OUTBOUND = 'OUTBOUND'
    ALL_DIRECTIONS = (DIRECTION_INBOUND, DIRECTION_OUTBOUND)
    # Status constants
    STATUS_PENDING = 'PENDING'
    STATUS_IN_TRANSIT = 'IN_TRANSIT'
    STATUS_ARRIVED = 'ARRIVED'
    STATUS_SIGNED = 'SIGNED'
    ALL_STATUSES = (STATUS_PENDING, STATUS_IN_TRANSIT, STATUS_ARRIVED, STATUS_SIGNED)
    ARRIVAL_STATUSES = (STATUS_ARRIVED, STATUS_SIGNED)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    round_id: Mapped[int] = mapped_column(ForeignKey('service_rounds.id'), nullable=False, index=True)
    direction: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    carrier: Mapped[Optional[str]] = mapped_column(String(64))
    tracking_number: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    origin: Mapped[Optional[str]] = mapped_column(String(128))
    destination: Mapped[Optional[str]] = mapped_column(String(128))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_PENDING, index=True)
    current_location: Mapped[Optional[str]] = mapped_column(String(128))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    estimated_arrival: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    shipped_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    actual_arrival: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    operator_id: Mapped[int] = mapped_column(ForeignKey('users.id'), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    round = relationship('ServiceRound', back_populates='shipments')

# Status flow: PENDING -> IN_TRANSIT -> ARRIVED / SIGNED
# shipped_at is stamped on the first IN_TRANSIT, actual_arrival on the first ARRIVED/SIGNED.
