"""
Storage interface consumed by the identity and ingestion services.

Implementations buffer writes until commit(); rollback() discards every
write since the last commit. Uniqueness violations surface as
StoreConflictError subclasses and any other backend fault as
StoreUnavailableError.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Protocol

from db.repositories.types import (
    AdvisorSnapshot,
    AppointmentSnapshot,
    ClientChanges,
    ClientSnapshot,
    ImportCounters,
    ImportJobSnapshot,
    NewActivity,
    NewAppointment,
    NewClient,
    NewNotification,
    NewTask,
)


class CRMStore(Protocol):
    # ── Clients ────────────────────────────────────────────────────────────────

    def get_client(self, client_id: uuid.UUID) -> ClientSnapshot | None:
        ...

    def find_client_by_email(self, address_key: str) -> ClientSnapshot | None:
        """Match against primary and secondary emails by canonical form."""
        ...

    def find_client_by_phone(self, number_key: str) -> ClientSnapshot | None:
        """Match against primary and secondary phones by canonical form."""
        ...

    def max_client_code_number(self) -> int:
        """Numeric maximum over codes shaped CL-<digits>; 0 when none exist."""
        ...

    def create_client(self, new_client: NewClient) -> ClientSnapshot:
        ...

    def update_client(self, client_id: uuid.UUID, changes: ClientChanges) -> ClientSnapshot:
        ...

    def touch_last_contact(self, client_id: uuid.UUID, at: datetime) -> None:
        ...

    # ── Activity log, tasks, notifications ─────────────────────────────────────

    def has_activity_for_event(self, external_event_id: str) -> bool:
        ...

    def create_activity(self, activity: NewActivity) -> uuid.UUID:
        ...

    def create_task(self, task: NewTask) -> uuid.UUID:
        ...

    def create_notification(self, notification: NewNotification) -> uuid.UUID:
        ...

    # ── Advisors and appointments ──────────────────────────────────────────────

    def get_advisor(self, advisor_id: uuid.UUID) -> AdvisorSnapshot | None:
        ...

    def first_available_advisor(self) -> AdvisorSnapshot | None:
        ...

    def create_appointment(self, appointment: NewAppointment) -> AppointmentSnapshot:
        ...

    def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentSnapshot | None:
        ...

    def find_client_appointment(
        self,
        client_id: uuid.UUID,
        *,
        starts_from: datetime,
        starts_until: datetime,
    ) -> AppointmentSnapshot | None:
        ...

    def reschedule_appointment(
        self,
        appointment_id: uuid.UUID,
        *,
        start_at: datetime,
        end_at: datetime,
        status: str,
    ) -> AppointmentSnapshot:
        ...

    # ── Import jobs ────────────────────────────────────────────────────────────

    def create_import_job(self, *, filename: str, total_records: int) -> ImportJobSnapshot:
        ...

    def get_import_job(self, job_id: uuid.UUID) -> ImportJobSnapshot | None:
        ...

    def list_import_jobs(self, *, limit: int) -> list[ImportJobSnapshot]:
        ...

    def mark_import_processing(
        self,
        job_id: uuid.UUID,
        *,
        mappings: list[dict[str, Any]],
        duplicate_strategy: str,
    ) -> ImportJobSnapshot:
        ...

    def record_import_progress(self, job_id: uuid.UUID, counters: ImportCounters) -> None:
        ...

    def mark_import_completed(
        self,
        job_id: uuid.UUID,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        ...

    def mark_import_failed(
        self,
        job_id: uuid.UUID,
        *,
        error_message: str,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        ...

    # ── Unit of work ───────────────────────────────────────────────────────────

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...
