"""
db/models/advisor.py

Advisor (team member) model. Advisors own clients, receive notifications and
are auto-assigned to appointments when available.
"""

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class AdvisorRole:
    ADMIN = "ADMIN"
    ADVISOR = "ADVISOR"
    STAFF = "STAFF"


class Advisor(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "advisors"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    title: Mapped[str | None] = mapped_column(String(120), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default=AdvisorRole.ADVISOR)
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        comment="Calendar availability toggle",
    )

    __table_args__ = (
        Index("ix_advisors_role_is_available", "role", "is_available"),
    )

    def __repr__(self) -> str:
        return f"<Advisor id={self.id} name={self.name!r} available={self.is_available}>"
