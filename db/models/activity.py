"""
db/models/activity.py

Immutable activity log entries attached to a client.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, UUIDPrimaryKeyMixin


class ActivityType:
    CALL = "call"
    EMAIL = "email"
    SMS = "sms"
    MEETING = "meeting"
    NOTE = "note"


class ActivitySubType:
    AI = "ai"
    HUMAN = "human"
    VOICEMAIL = "voicemail"
    TRANSFER = "transfer"


class ActivityDirection:
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Activity(Base, UUIDPrimaryKeyMixin):
    """
    One activity log entry.

    external_event_id carries the originating platform's event id (for
    example a voice-AI call id). Its unique constraint is the final guard
    that keeps a retried webhook from logging the same call twice.
    """

    __tablename__ = "activities"

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    activity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    sub_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    direction: Mapped[str | None] = mapped_column(String(16), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    external_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    analysis: Mapped[dict[str, Any] | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="summary, intent, sentiment, next_action",
    )
    transcript: Mapped[list[Any] | None] = mapped_column(
        JSONB,
        nullable=True,
        comment="Ordered list of {speaker, text}",
    )
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("external_event_id", name="uq_activities_external_event_id"),
        Index("ix_activities_client_id_occurred_at", "client_id", "occurred_at"),
    )
