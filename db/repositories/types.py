"""
Typed DTOs exchanged between services and the CRM store.

Services never see ORM instances; every read returns one of the frozen
snapshots below so the SQL and in-memory stores are interchangeable.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class ContactPoint:
    """
    One phone number or email address.

    value is the display form as supplied; key is the canonical form used
    for matching (trailing 10 digits for phones, lower-cased for emails).
    """

    value: str
    key: str
    kind: str
    is_primary: bool = False


@dataclass(frozen=True)
class ClientSnapshot:
    id: uuid.UUID
    name: str
    status: str
    pipeline_stage: str
    client_code: str | None = None
    tags: tuple[str, ...] = ()
    advisor_id: uuid.UUID | None = None
    last_contact_at: datetime | None = None
    phones: tuple[ContactPoint, ...] = ()
    emails: tuple[ContactPoint, ...] = ()

    @property
    def primary_phone(self) -> ContactPoint | None:
        return next((phone for phone in self.phones if phone.is_primary), None)

    @property
    def primary_email(self) -> ContactPoint | None:
        return next((email for email in self.emails if email.is_primary), None)


@dataclass(frozen=True)
class NewClient:
    name: str
    status: str
    pipeline_stage: str
    client_code: str | None = None
    tags: tuple[str, ...] = ()
    advisor_id: uuid.UUID | None = None
    phones: tuple[ContactPoint, ...] = ()
    emails: tuple[ContactPoint, ...] = ()


@dataclass(frozen=True)
class ClientChanges:
    """
    Partial update of a client. None means "leave unchanged".

    add_phones / add_emails are appended with their is_primary flag as given;
    the store never demotes an identifier already on file.
    """

    name: str | None = None
    status: str | None = None
    pipeline_stage: str | None = None
    tags: tuple[str, ...] | None = None
    advisor_id: uuid.UUID | None = None
    add_phones: tuple[ContactPoint, ...] = ()
    add_emails: tuple[ContactPoint, ...] = ()

    def is_empty(self) -> bool:
        return (
            self.name is None
            and self.status is None
            and self.pipeline_stage is None
            and self.tags is None
            and self.advisor_id is None
            and not self.add_phones
            and not self.add_emails
        )


@dataclass(frozen=True)
class NewActivity:
    client_id: uuid.UUID
    activity_type: str
    description: str
    sub_type: str | None = None
    direction: str | None = None
    status: str | None = None
    external_event_id: str | None = None
    duration_seconds: int | None = None
    analysis: dict[str, Any] | None = None
    transcript: list[dict[str, str]] | None = None
    recording_url: str | None = None
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class NewTask:
    title: str
    priority: str
    status: str
    description: str | None = None
    task_type: str | None = None
    due_at: datetime | None = None
    client_id: uuid.UUID | None = None
    assigned_to_id: uuid.UUID | None = None


@dataclass(frozen=True)
class NewNotification:
    user_id: uuid.UUID
    notification_type: str
    title: str
    message: str
    link: str | None = None


@dataclass(frozen=True)
class AdvisorSnapshot:
    id: uuid.UUID
    name: str
    role: str
    is_available: bool
    email: str | None = None


@dataclass(frozen=True)
class NewAppointment:
    title: str
    start_at: datetime
    end_at: datetime
    appointment_type: str
    status: str
    client_id: uuid.UUID | None = None
    advisor_id: uuid.UUID | None = None


@dataclass(frozen=True)
class AppointmentSnapshot:
    id: uuid.UUID
    title: str
    start_at: datetime
    end_at: datetime
    appointment_type: str
    status: str
    client_id: uuid.UUID | None = None
    advisor_id: uuid.UUID | None = None


@dataclass
class ImportCounters:
    """
    Running tallies of one import execution.

    success is derived so created + updated + skipped + error always adds
    up to the processed row count.
    """

    processed: int = 0
    created: int = 0
    updated: int = 0
    duplicate_created: int = 0
    skipped: int = 0
    error: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> int:
        return self.created + self.updated


@dataclass(frozen=True)
class ImportJobSnapshot:
    id: uuid.UUID
    filename: str
    status: str
    total_records: int
    processed_count: int = 0
    created_count: int = 0
    updated_count: int = 0
    duplicate_created_count: int = 0
    skipped_count: int = 0
    error_count: int = 0
    success_count: int = 0
    errors: tuple[dict[str, Any], ...] = ()
    mappings: tuple[dict[str, Any], ...] = ()
    duplicate_strategy: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
