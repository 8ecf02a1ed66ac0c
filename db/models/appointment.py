"""
db/models/appointment.py

Calendar appointments booked through workflow automation.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AppointmentStatus:
    SCHEDULED = "Scheduled"
    RESCHEDULED = "Rescheduled"


class Appointment(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "appointments"

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    appointment_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Meeting")
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=AppointmentStatus.SCHEDULED,
    )
    client_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="SET NULL"),
        nullable=True,
    )
    advisor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("advisors.id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_appointments_client_id_start_at", "client_id", "start_at"),
        Index("ix_appointments_advisor_id_start_at", "advisor_id", "start_at"),
    )
