"""
In-process CRM store.

Keeps committed and pending state as dictionaries of frozen snapshots so
rollback() can restore the last committed view. Used by the test-suite
and for running the service without PostgreSQL.
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from db.repositories.errors import (
    DuplicateClientCodeError,
    DuplicateExternalEventError,
    RecordNotFoundError,
    StoreUnavailableError,
)
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

_CLIENT_CODE_PREFIX = "CL-"
_ADVISOR_ROLE = "ADVISOR"


@dataclass
class _State:
    clients: dict[uuid.UUID, ClientSnapshot] = field(default_factory=dict)
    activities: dict[uuid.UUID, NewActivity] = field(default_factory=dict)
    tasks: dict[uuid.UUID, NewTask] = field(default_factory=dict)
    notifications: dict[uuid.UUID, NewNotification] = field(default_factory=dict)
    advisors: dict[uuid.UUID, AdvisorSnapshot] = field(default_factory=dict)
    appointments: dict[uuid.UUID, AppointmentSnapshot] = field(default_factory=dict)
    import_jobs: dict[uuid.UUID, ImportJobSnapshot] = field(default_factory=dict)

    def copy(self) -> "_State":
        return _State(**{name: dict(value) for name, value in vars(self).items()})


def _code_number(client_code: str | None) -> int | None:
    if not client_code or not client_code.startswith(_CLIENT_CODE_PREFIX):
        return None
    digits = client_code[len(_CLIENT_CODE_PREFIX):]
    if not digits.isdigit():
        return None
    return int(digits)


class InMemoryCRMStore:
    """
    CRMStore backed by plain dictionaries.

    fail_next() queues an exception for a named operation, which lets tests
    exercise storage faults at precise points of a pipeline.
    """

    def __init__(self) -> None:
        self._committed = _State()
        self._pending = _State()
        self._failures: dict[str, list[Exception]] = {}
        self.commit_count = 0
        self.rollback_count = 0

    # ── Test helpers ───────────────────────────────────────────────────────────

    def fail_next(self, operation: str, error: Exception | None = None, *, times: int = 1) -> None:
        queued = self._failures.setdefault(operation, [])
        for _ in range(times):
            queued.append(error or StoreUnavailableError(f"{operation} failed"))

    def _maybe_fail(self, operation: str) -> None:
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    def add_advisor(
        self,
        name: str,
        *,
        is_available: bool = True,
        role: str = _ADVISOR_ROLE,
        email: str | None = None,
    ) -> AdvisorSnapshot:
        advisor = AdvisorSnapshot(
            id=uuid.uuid4(),
            name=name,
            role=role,
            is_available=is_available,
            email=email,
        )
        self._pending.advisors[advisor.id] = advisor
        self._committed.advisors[advisor.id] = advisor
        return advisor

    @property
    def clients(self) -> list[ClientSnapshot]:
        return list(self._committed.clients.values())

    @property
    def activities(self) -> list[NewActivity]:
        return list(self._committed.activities.values())

    @property
    def tasks(self) -> list[NewTask]:
        return list(self._committed.tasks.values())

    @property
    def notifications(self) -> list[NewNotification]:
        return list(self._committed.notifications.values())

    @property
    def appointments(self) -> list[AppointmentSnapshot]:
        return list(self._committed.appointments.values())

    # ── Clients ────────────────────────────────────────────────────────────────

    def get_client(self, client_id: uuid.UUID) -> ClientSnapshot | None:
        self._maybe_fail("get_client")
        return self._pending.clients.get(client_id)

    def find_client_by_email(self, address_key: str) -> ClientSnapshot | None:
        self._maybe_fail("find_client_by_email")
        if not address_key:
            return None
        return self._first_match(lambda client: client.emails, address_key)

    def find_client_by_phone(self, number_key: str) -> ClientSnapshot | None:
        self._maybe_fail("find_client_by_phone")
        if not number_key:
            return None
        return self._first_match(lambda client: client.phones, number_key)

    def _first_match(self, points_of, key: str) -> ClientSnapshot | None:
        # Primary identifiers outrank secondary ones, then creation order.
        for want_primary in (True, False):
            for client in self._pending.clients.values():
                for point in points_of(client):
                    if point.key == key and point.is_primary is want_primary:
                        return client
        return None

    def max_client_code_number(self) -> int:
        self._maybe_fail("max_client_code_number")
        numbers = [
            number
            for number in (_code_number(c.client_code) for c in self._pending.clients.values())
            if number is not None
        ]
        return max(numbers, default=0)

    def create_client(self, new_client: NewClient) -> ClientSnapshot:
        self._maybe_fail("create_client")
        if new_client.client_code is not None and any(
            client.client_code == new_client.client_code
            for client in self._pending.clients.values()
        ):
            raise DuplicateClientCodeError(
                f"create_client violated uq_clients_client_code ({new_client.client_code})"
            )
        client = ClientSnapshot(
            id=uuid.uuid4(),
            name=new_client.name,
            status=new_client.status,
            pipeline_stage=new_client.pipeline_stage,
            client_code=new_client.client_code,
            tags=tuple(new_client.tags),
            advisor_id=new_client.advisor_id,
            phones=tuple(new_client.phones),
            emails=tuple(new_client.emails),
        )
        self._pending.clients[client.id] = client
        return client

    def update_client(self, client_id: uuid.UUID, changes: ClientChanges) -> ClientSnapshot:
        self._maybe_fail("update_client")
        client = self._pending.clients.get(client_id)
        if client is None:
            raise RecordNotFoundError(f"Client not found: {client_id}")
        updates: dict[str, Any] = {}
        if changes.name is not None:
            updates["name"] = changes.name
        if changes.status is not None:
            updates["status"] = changes.status
        if changes.pipeline_stage is not None:
            updates["pipeline_stage"] = changes.pipeline_stage
        if changes.tags is not None:
            updates["tags"] = tuple(changes.tags)
        if changes.advisor_id is not None:
            updates["advisor_id"] = changes.advisor_id
        if changes.add_phones:
            updates["phones"] = client.phones + tuple(changes.add_phones)
        if changes.add_emails:
            updates["emails"] = client.emails + tuple(changes.add_emails)
        updated = dataclasses.replace(client, **updates)
        self._pending.clients[client_id] = updated
        return updated

    def touch_last_contact(self, client_id: uuid.UUID, at: datetime) -> None:
        self._maybe_fail("touch_last_contact")
        client = self._pending.clients.get(client_id)
        if client is None:
            raise RecordNotFoundError(f"Client not found: {client_id}")
        self._pending.clients[client_id] = dataclasses.replace(client, last_contact_at=at)

    # ── Activity log, tasks, notifications ─────────────────────────────────────

    def has_activity_for_event(self, external_event_id: str) -> bool:
        self._maybe_fail("has_activity_for_event")
        return self._event_logged(external_event_id)

    def _event_logged(self, external_event_id: str) -> bool:
        return any(
            activity.external_event_id == external_event_id
            for activity in self._pending.activities.values()
        )

    def create_activity(self, activity: NewActivity) -> uuid.UUID:
        self._maybe_fail("create_activity")
        if activity.external_event_id is not None and self._event_logged(
            activity.external_event_id
        ):
            raise DuplicateExternalEventError(
                f"create_activity violated uq_activities_external_event_id ({activity.external_event_id})"
            )
        if activity.client_id not in self._pending.clients:
            raise RecordNotFoundError(f"Client not found: {activity.client_id}")
        activity_id = uuid.uuid4()
        if activity.occurred_at is None:
            activity = dataclasses.replace(activity, occurred_at=datetime.now(timezone.utc))
        self._pending.activities[activity_id] = activity
        return activity_id

    def create_task(self, task: NewTask) -> uuid.UUID:
        self._maybe_fail("create_task")
        task_id = uuid.uuid4()
        self._pending.tasks[task_id] = task
        return task_id

    def create_notification(self, notification: NewNotification) -> uuid.UUID:
        self._maybe_fail("create_notification")
        notification_id = uuid.uuid4()
        self._pending.notifications[notification_id] = notification
        return notification_id

    # ── Advisors and appointments ──────────────────────────────────────────────

    def get_advisor(self, advisor_id: uuid.UUID) -> AdvisorSnapshot | None:
        self._maybe_fail("get_advisor")
        return self._pending.advisors.get(advisor_id)

    def first_available_advisor(self) -> AdvisorSnapshot | None:
        self._maybe_fail("first_available_advisor")
        return next(
            (
                advisor
                for advisor in self._pending.advisors.values()
                if advisor.is_available and advisor.role == _ADVISOR_ROLE
            ),
            None,
        )

    def create_appointment(self, appointment: NewAppointment) -> AppointmentSnapshot:
        self._maybe_fail("create_appointment")
        snapshot = AppointmentSnapshot(id=uuid.uuid4(), **dataclasses.asdict(appointment))
        self._pending.appointments[snapshot.id] = snapshot
        return snapshot

    def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentSnapshot | None:
        self._maybe_fail("get_appointment")
        return self._pending.appointments.get(appointment_id)

    def find_client_appointment(
        self,
        client_id: uuid.UUID,
        *,
        starts_from: datetime,
        starts_until: datetime,
    ) -> AppointmentSnapshot | None:
        self._maybe_fail("find_client_appointment")
        candidates = sorted(
            (
                appointment
                for appointment in self._pending.appointments.values()
                if appointment.client_id == client_id
                and starts_from <= appointment.start_at < starts_until
            ),
            key=lambda appointment: appointment.start_at,
        )
        return candidates[0] if candidates else None

    def reschedule_appointment(
        self,
        appointment_id: uuid.UUID,
        *,
        start_at: datetime,
        end_at: datetime,
        status: str,
    ) -> AppointmentSnapshot:
        self._maybe_fail("reschedule_appointment")
        appointment = self._pending.appointments.get(appointment_id)
        if appointment is None:
            raise RecordNotFoundError(f"Appointment not found: {appointment_id}")
        updated = dataclasses.replace(appointment, start_at=start_at, end_at=end_at, status=status)
        self._pending.appointments[appointment_id] = updated
        return updated

    # ── Import jobs ────────────────────────────────────────────────────────────

    def _require_job(self, job_id: uuid.UUID) -> ImportJobSnapshot:
        job = self._pending.import_jobs.get(job_id)
        if job is None:
            raise RecordNotFoundError(f"Import job not found: {job_id}")
        return job

    def _replace_job(self, job: ImportJobSnapshot, **updates: Any) -> ImportJobSnapshot:
        updated = dataclasses.replace(job, **updates)
        self._pending.import_jobs[job.id] = updated
        return updated

    @staticmethod
    def _counter_fields(counters: ImportCounters) -> dict[str, Any]:
        return {
            "processed_count": counters.processed,
            "created_count": counters.created,
            "updated_count": counters.updated,
            "duplicate_created_count": counters.duplicate_created,
            "skipped_count": counters.skipped,
            "error_count": counters.error,
            "success_count": counters.success,
            "errors": tuple(counters.errors),
        }

    def create_import_job(self, *, filename: str, total_records: int) -> ImportJobSnapshot:
        self._maybe_fail("create_import_job")
        job = ImportJobSnapshot(
            id=uuid.uuid4(),
            filename=filename,
            status="pending",
            total_records=total_records,
            created_at=datetime.now(timezone.utc),
        )
        self._pending.import_jobs[job.id] = job
        return job

    def get_import_job(self, job_id: uuid.UUID) -> ImportJobSnapshot | None:
        self._maybe_fail("get_import_job")
        return self._pending.import_jobs.get(job_id)

    def list_import_jobs(self, *, limit: int) -> list[ImportJobSnapshot]:
        self._maybe_fail("list_import_jobs")
        newest_first = list(reversed(list(self._pending.import_jobs.values())))
        return newest_first[: max(1, limit)]

    def mark_import_processing(
        self,
        job_id: uuid.UUID,
        *,
        mappings: list[dict[str, Any]],
        duplicate_strategy: str,
    ) -> ImportJobSnapshot:
        self._maybe_fail("mark_import_processing")
        return self._replace_job(
            self._require_job(job_id),
            status="processing",
            mappings=tuple(mappings),
            duplicate_strategy=duplicate_strategy,
            started_at=datetime.now(timezone.utc),
            completed_at=None,
            error_message=None,
        )

    def record_import_progress(self, job_id: uuid.UUID, counters: ImportCounters) -> None:
        self._maybe_fail("record_import_progress")
        self._replace_job(self._require_job(job_id), **self._counter_fields(counters))

    def mark_import_completed(
        self,
        job_id: uuid.UUID,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        self._maybe_fail("mark_import_completed")
        return self._replace_job(
            self._require_job(job_id),
            status="completed",
            completed_at=datetime.now(timezone.utc),
            **self._counter_fields(counters),
        )

    def mark_import_failed(
        self,
        job_id: uuid.UUID,
        *,
        error_message: str,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        self._maybe_fail("mark_import_failed")
        return self._replace_job(
            self._require_job(job_id),
            status="failed",
            error_message=error_message,
            completed_at=datetime.now(timezone.utc),
            **self._counter_fields(counters),
        )

    # ── Unit of work ───────────────────────────────────────────────────────────

    def commit(self) -> None:
        self._maybe_fail("commit")
        self._committed = self._pending.copy()
        self.commit_count += 1

    def rollback(self) -> None:
        self._pending = self._committed.copy()
        self.rollback_count += 1
