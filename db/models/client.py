"""
db/models/client.py

Client graph: a person or household tracked by an advisor, plus its phone
numbers and email addresses.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from db.models.advisor import Advisor


class ClientStatus:
    LEAD = "Lead"
    PROSPECT = "Prospect"
    ACTIVE = "Active"

    ALL: tuple[str, ...] = (LEAD, PROSPECT, ACTIVE)


class PipelineStage:
    NEW_LEAD = "New Lead"
    CONTACTED = "Contacted"
    APPOINTMENT_BOOKED = "Appointment Booked"
    ATTENDED = "Attended"
    PROPOSAL = "Proposal"
    CLIENT_ONBOARDED = "Client Onboarded"

    # Ordered from first touch to onboarding.
    ORDERED: tuple[str, ...] = (
        NEW_LEAD,
        CONTACTED,
        APPOINTMENT_BOOKED,
        ATTENDED,
        PROPOSAL,
        CLIENT_ONBOARDED,
    )


class PhoneType:
    HOME = "HOME"
    WORK = "WORK"
    CELLULAR = "CELLULAR"
    OTHER = "OTHER"


class EmailType:
    HOME = "HOME"
    HOME2 = "HOME2"
    WORK = "WORK"
    PERSONAL = "PERSONAL"
    OTHER = "OTHER"


class Client(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Represents one client (or household) in the advisor's book.

    client_code is the human-facing CL-#### identifier. It is nullable for
    legacy rows but unique once assigned; the unique constraint is the
    authoritative guard against concurrent allocation.
    """

    __tablename__ = "clients"

    client_code: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Human-facing identifier, CL- followed by at least 4 digits",
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=ClientStatus.LEAD,
        comment="Lead, Prospect, Active",
    )
    pipeline_stage: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=PipelineStage.NEW_LEAD,
    )
    tags: Mapped[list[Any] | None] = mapped_column(JSONB, nullable=True)
    advisor_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("advisors.id", ondelete="SET NULL"),
        nullable=True,
    )
    last_contact_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────────

    phones: Mapped[list["ClientPhone"]] = relationship(
        "ClientPhone",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ClientPhone.created_at",
    )
    emails: Mapped[list["ClientEmail"]] = relationship(
        "ClientEmail",
        back_populates="client",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ClientEmail.created_at",
    )
    advisor: Mapped["Advisor | None"] = relationship("Advisor")

    # ── Indexes ────────────────────────────────────────────────────────────────

    __table_args__ = (
        UniqueConstraint("client_code", name="uq_clients_client_code"),
        Index("ix_clients_status", "status"),
        Index("ix_clients_advisor_id", "advisor_id"),
    )

    def __repr__(self) -> str:
        return f"<Client id={self.id} code={self.client_code!r} name={self.name!r}>"


class ClientPhone(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "client_phones"

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Number as supplied, kept for display",
    )
    number_key: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        comment="Trailing 10 digits used for matching",
    )
    phone_type: Mapped[str] = mapped_column(String(16), nullable=False, default=PhoneType.OTHER)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    client: Mapped[Client] = relationship("Client", back_populates="phones")

    __table_args__ = (
        Index("ix_client_phones_number_key", "number_key"),
        Index(
            "uq_client_phones_one_primary",
            "client_id",
            unique=True,
            postgresql_where=text("is_primary"),
        ),
    )


class ClientEmail(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "client_emails"

    client_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
    )
    address: Mapped[str] = mapped_column(String(320), nullable=False)
    address_key: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        comment="Trimmed, lower-cased address used for matching",
    )
    email_type: Mapped[str] = mapped_column(String(16), nullable=False, default=EmailType.OTHER)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    client: Mapped[Client] = relationship("Client", back_populates="emails")

    __table_args__ = (
        Index("ix_client_emails_address_key", "address_key"),
        Index(
            "uq_client_emails_one_primary",
            "client_id",
            unique=True,
            postgresql_where=text("is_primary"),
        ),
    )
