"""
SQLAlchemy implementation of the CRM store.

Writes are flushed immediately so constraint violations surface at the
call site, and are made durable only by commit().
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Integer, Select, cast, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from db.models.activity import Activity
from db.models.advisor import Advisor, AdvisorRole
from db.models.appointment import Appointment
from db.models.client import Client, ClientEmail, ClientPhone
from db.models.import_job import ImportJob, ImportJobStatus
from db.models.notification import Notification
from db.models.task import Task
from db.repositories.errors import (
    DuplicateClientCodeError,
    DuplicateExternalEventError,
    RecordNotFoundError,
    StoreConflictError,
    StoreUnavailableError,
)
from db.repositories.types import (
    AdvisorSnapshot,
    AppointmentSnapshot,
    ClientChanges,
    ClientSnapshot,
    ContactPoint,
    ImportCounters,
    ImportJobSnapshot,
    NewActivity,
    NewAppointment,
    NewClient,
    NewNotification,
    NewTask,
)

logger = logging.getLogger(__name__)

_CLIENT_CODE_PATTERN = r"^CL-[0-9]+$"
_CLIENT_CODE_PREFIX_LENGTH = len("CL-")

_CONFLICTS_BY_CONSTRAINT: dict[str, type[StoreConflictError]] = {
    "uq_clients_client_code": DuplicateClientCodeError,
    "uq_activities_external_event_id": DuplicateExternalEventError,
}


def _constraint_name(exc: IntegrityError) -> str:
    diag = getattr(exc.orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    if name:
        return str(name)
    return str(exc.orig)


def _conflict_from_integrity(exc: IntegrityError, operation: str) -> StoreConflictError:
    reported = _constraint_name(exc)
    for constraint, error_cls in _CONFLICTS_BY_CONSTRAINT.items():
        if constraint in reported:
            return error_cls(f"{operation} violated {constraint}")
    return StoreConflictError(f"{operation} violated a uniqueness constraint: {reported}")


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except IntegrityError as exc:
        raise _conflict_from_integrity(exc, operation) from exc
    except SQLAlchemyError as exc:
        logger.warning("Store operation failed operation=%s error=%s", operation, exc)
        raise StoreUnavailableError(f"{operation} failed: {exc.__class__.__name__}") from exc


# ── ORM → snapshot conversion ─────────────────────────────────────────────────


def _client_snapshot(client: Client) -> ClientSnapshot:
    return ClientSnapshot(
        id=client.id,
        name=client.name,
        status=client.status,
        pipeline_stage=client.pipeline_stage,
        client_code=client.client_code,
        tags=tuple(str(tag) for tag in client.tags or ()),
        advisor_id=client.advisor_id,
        last_contact_at=client.last_contact_at,
        phones=tuple(
            ContactPoint(
                value=phone.number,
                key=phone.number_key,
                kind=phone.phone_type,
                is_primary=phone.is_primary,
            )
            for phone in client.phones
        ),
        emails=tuple(
            ContactPoint(
                value=email.address,
                key=email.address_key,
                kind=email.email_type,
                is_primary=email.is_primary,
            )
            for email in client.emails
        ),
    )


def _advisor_snapshot(advisor: Advisor) -> AdvisorSnapshot:
    return AdvisorSnapshot(
        id=advisor.id,
        name=advisor.name,
        role=advisor.role,
        is_available=advisor.is_available,
        email=advisor.email,
    )


def _appointment_snapshot(appointment: Appointment) -> AppointmentSnapshot:
    return AppointmentSnapshot(
        id=appointment.id,
        title=appointment.title,
        start_at=appointment.start_at,
        end_at=appointment.end_at,
        appointment_type=appointment.appointment_type,
        status=appointment.status,
        client_id=appointment.client_id,
        advisor_id=appointment.advisor_id,
    )


def _job_snapshot(job: ImportJob) -> ImportJobSnapshot:
    return ImportJobSnapshot(
        id=job.id,
        filename=job.filename,
        status=job.status,
        total_records=job.total_records,
        processed_count=job.processed_count,
        created_count=job.created_count,
        updated_count=job.updated_count,
        duplicate_created_count=job.duplicate_created_count,
        skipped_count=job.skipped_count,
        error_count=job.error_count,
        success_count=job.success_count,
        errors=tuple(job.errors or ()),
        mappings=tuple(job.mappings or ()),
        duplicate_strategy=job.duplicate_strategy,
        error_message=job.error_message,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


def _phone_row(point: ContactPoint) -> ClientPhone:
    return ClientPhone(
        number=point.value,
        number_key=point.key,
        phone_type=point.kind,
        is_primary=point.is_primary,
    )


def _email_row(point: ContactPoint) -> ClientEmail:
    return ClientEmail(
        address=point.value,
        address_key=point.key,
        email_type=point.kind,
        is_primary=point.is_primary,
    )


def _apply_counters(job: ImportJob, counters: ImportCounters) -> None:
    job.processed_count = counters.processed
    job.created_count = counters.created
    job.updated_count = counters.updated
    job.duplicate_created_count = counters.duplicate_created
    job.skipped_count = counters.skipped
    job.error_count = counters.error
    job.success_count = counters.success
    job.errors = list(counters.errors)


class SQLAlchemyCRMStore:
    def __init__(self, session: Session) -> None:
        self._session = session

    # ── Clients ────────────────────────────────────────────────────────────────

    @staticmethod
    def _client_query() -> Select[tuple[Client]]:
        return select(Client).options(
            selectinload(Client.phones),
            selectinload(Client.emails),
        )

    def _load_client(self, client_id: uuid.UUID) -> Client | None:
        stmt = self._client_query().where(Client.id == client_id)
        return self._session.scalars(stmt).first()

    def get_client(self, client_id: uuid.UUID) -> ClientSnapshot | None:
        with _store_errors("get_client"):
            client = self._load_client(client_id)
        return _client_snapshot(client) if client is not None else None

    def find_client_by_email(self, address_key: str) -> ClientSnapshot | None:
        if not address_key:
            return None
        stmt = (
            self._client_query()
            .join(ClientEmail, ClientEmail.client_id == Client.id)
            .where(ClientEmail.address_key == address_key)
            .order_by(ClientEmail.is_primary.desc(), Client.created_at.asc())
            .limit(1)
        )
        with _store_errors("find_client_by_email"):
            client = self._session.scalars(stmt).first()
        return _client_snapshot(client) if client is not None else None

    def find_client_by_phone(self, number_key: str) -> ClientSnapshot | None:
        if not number_key:
            return None
        stmt = (
            self._client_query()
            .join(ClientPhone, ClientPhone.client_id == Client.id)
            .where(ClientPhone.number_key == number_key)
            .order_by(ClientPhone.is_primary.desc(), Client.created_at.asc())
            .limit(1)
        )
        with _store_errors("find_client_by_phone"):
            client = self._session.scalars(stmt).first()
        return _client_snapshot(client) if client is not None else None

    def max_client_code_number(self) -> int:
        numeric_part = cast(
            func.substr(Client.client_code, _CLIENT_CODE_PREFIX_LENGTH + 1),
            Integer,
        )
        stmt = select(func.max(numeric_part)).where(
            Client.client_code.op("~")(_CLIENT_CODE_PATTERN)
        )
        with _store_errors("max_client_code_number"):
            value = self._session.scalar(stmt)
        return int(value or 0)

    def create_client(self, new_client: NewClient) -> ClientSnapshot:
        client = Client(
            name=new_client.name,
            status=new_client.status,
            pipeline_stage=new_client.pipeline_stage,
            client_code=new_client.client_code,
            tags=list(new_client.tags) or None,
            advisor_id=new_client.advisor_id,
        )
        client.phones = [_phone_row(point) for point in new_client.phones]
        client.emails = [_email_row(point) for point in new_client.emails]
        with _store_errors("create_client"):
            self._session.add(client)
            self._session.flush()
        return _client_snapshot(client)

    def update_client(self, client_id: uuid.UUID, changes: ClientChanges) -> ClientSnapshot:
        with _store_errors("update_client"):
            client = self._load_client(client_id)
            if client is None:
                raise RecordNotFoundError(f"Client not found: {client_id}")

            if changes.name is not None:
                client.name = changes.name
            if changes.status is not None:
                client.status = changes.status
            if changes.pipeline_stage is not None:
                client.pipeline_stage = changes.pipeline_stage
            if changes.tags is not None:
                client.tags = list(changes.tags)
            if changes.advisor_id is not None:
                client.advisor_id = changes.advisor_id
            for point in changes.add_phones:
                client.phones.append(_phone_row(point))
            for point in changes.add_emails:
                client.emails.append(_email_row(point))

            self._session.flush()
        return _client_snapshot(client)

    def touch_last_contact(self, client_id: uuid.UUID, at: datetime) -> None:
        stmt = update(Client).where(Client.id == client_id).values(last_contact_at=at)
        with _store_errors("touch_last_contact"):
            result = self._session.execute(stmt)
        if result.rowcount == 0:
            raise RecordNotFoundError(f"Client not found: {client_id}")

    # ── Activity log, tasks, notifications ─────────────────────────────────────

    def has_activity_for_event(self, external_event_id: str) -> bool:
        stmt = (
            select(Activity.id)
            .where(Activity.external_event_id == external_event_id)
            .limit(1)
        )
        with _store_errors("has_activity_for_event"):
            return self._session.scalar(stmt) is not None

    def create_activity(self, activity: NewActivity) -> uuid.UUID:
        row = Activity(
            client_id=activity.client_id,
            activity_type=activity.activity_type,
            sub_type=activity.sub_type,
            direction=activity.direction,
            description=activity.description,
            status=activity.status,
            external_event_id=activity.external_event_id,
            duration_seconds=activity.duration_seconds,
            analysis=activity.analysis,
            transcript=activity.transcript,
            recording_url=activity.recording_url,
            occurred_at=activity.occurred_at or datetime.now(timezone.utc),
        )
        with _store_errors("create_activity"):
            self._session.add(row)
            self._session.flush()
        return row.id

    def create_task(self, task: NewTask) -> uuid.UUID:
        row = Task(
            title=task.title,
            description=task.description,
            priority=task.priority,
            task_type=task.task_type,
            status=task.status,
            due_at=task.due_at,
            client_id=task.client_id,
            assigned_to_id=task.assigned_to_id,
        )
        with _store_errors("create_task"):
            self._session.add(row)
            self._session.flush()
        return row.id

    def create_notification(self, notification: NewNotification) -> uuid.UUID:
        row = Notification(
            user_id=notification.user_id,
            notification_type=notification.notification_type,
            title=notification.title,
            message=notification.message,
            link=notification.link,
        )
        with _store_errors("create_notification"):
            self._session.add(row)
            self._session.flush()
        return row.id

    # ── Advisors and appointments ──────────────────────────────────────────────

    def get_advisor(self, advisor_id: uuid.UUID) -> AdvisorSnapshot | None:
        with _store_errors("get_advisor"):
            advisor = self._session.get(Advisor, advisor_id)
        return _advisor_snapshot(advisor) if advisor is not None else None

    def first_available_advisor(self) -> AdvisorSnapshot | None:
        stmt = (
            select(Advisor)
            .where(Advisor.role == AdvisorRole.ADVISOR, Advisor.is_available.is_(True))
            .order_by(Advisor.created_at.asc())
            .limit(1)
        )
        with _store_errors("first_available_advisor"):
            advisor = self._session.scalars(stmt).first()
        return _advisor_snapshot(advisor) if advisor is not None else None

    def create_appointment(self, appointment: NewAppointment) -> AppointmentSnapshot:
        row = Appointment(
            title=appointment.title,
            start_at=appointment.start_at,
            end_at=appointment.end_at,
            appointment_type=appointment.appointment_type,
            status=appointment.status,
            client_id=appointment.client_id,
            advisor_id=appointment.advisor_id,
        )
        with _store_errors("create_appointment"):
            self._session.add(row)
            self._session.flush()
        return _appointment_snapshot(row)

    def get_appointment(self, appointment_id: uuid.UUID) -> AppointmentSnapshot | None:
        with _store_errors("get_appointment"):
            row = self._session.get(Appointment, appointment_id)
        return _appointment_snapshot(row) if row is not None else None

    def find_client_appointment(
        self,
        client_id: uuid.UUID,
        *,
        starts_from: datetime,
        starts_until: datetime,
    ) -> AppointmentSnapshot | None:
        stmt = (
            select(Appointment)
            .where(
                Appointment.client_id == client_id,
                Appointment.start_at >= starts_from,
                Appointment.start_at < starts_until,
            )
            .order_by(Appointment.start_at.asc())
            .limit(1)
        )
        with _store_errors("find_client_appointment"):
            row = self._session.scalars(stmt).first()
        return _appointment_snapshot(row) if row is not None else None

    def reschedule_appointment(
        self,
        appointment_id: uuid.UUID,
        *,
        start_at: datetime,
        end_at: datetime,
        status: str,
    ) -> AppointmentSnapshot:
        with _store_errors("reschedule_appointment"):
            row = self._session.get(Appointment, appointment_id)
            if row is None:
                raise RecordNotFoundError(f"Appointment not found: {appointment_id}")
            row.start_at = start_at
            row.end_at = end_at
            row.status = status
            self._session.flush()
        return _appointment_snapshot(row)

    # ── Import jobs ────────────────────────────────────────────────────────────

    def _require_job(self, job_id: uuid.UUID) -> ImportJob:
        job = self._session.get(ImportJob, job_id)
        if job is None:
            raise RecordNotFoundError(f"Import job not found: {job_id}")
        return job

    def create_import_job(self, *, filename: str, total_records: int) -> ImportJobSnapshot:
        job = ImportJob(
            filename=filename,
            status=ImportJobStatus.PENDING,
            total_records=total_records,
            errors=[],
        )
        with _store_errors("create_import_job"):
            self._session.add(job)
            self._session.flush()
            self._session.refresh(job)
        return _job_snapshot(job)

    def get_import_job(self, job_id: uuid.UUID) -> ImportJobSnapshot | None:
        with _store_errors("get_import_job"):
            job = self._session.get(ImportJob, job_id)
        return _job_snapshot(job) if job is not None else None

    def list_import_jobs(self, *, limit: int) -> list[ImportJobSnapshot]:
        stmt = select(ImportJob).order_by(ImportJob.created_at.desc()).limit(max(1, limit))
        with _store_errors("list_import_jobs"):
            jobs = list(self._session.scalars(stmt).all())
        return [_job_snapshot(job) for job in jobs]

    def mark_import_processing(
        self,
        job_id: uuid.UUID,
        *,
        mappings: list[dict[str, Any]],
        duplicate_strategy: str,
    ) -> ImportJobSnapshot:
        with _store_errors("mark_import_processing"):
            job = self._require_job(job_id)
            job.status = ImportJobStatus.PROCESSING
            job.mappings = mappings
            job.duplicate_strategy = duplicate_strategy
            job.started_at = datetime.now(timezone.utc)
            job.completed_at = None
            job.error_message = None
            self._session.flush()
        return _job_snapshot(job)

    def record_import_progress(self, job_id: uuid.UUID, counters: ImportCounters) -> None:
        with _store_errors("record_import_progress"):
            job = self._require_job(job_id)
            _apply_counters(job, counters)
            self._session.flush()

    def mark_import_completed(
        self,
        job_id: uuid.UUID,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        with _store_errors("mark_import_completed"):
            job = self._require_job(job_id)
            _apply_counters(job, counters)
            job.status = ImportJobStatus.COMPLETED
            job.completed_at = datetime.now(timezone.utc)
            self._session.flush()
        return _job_snapshot(job)

    def mark_import_failed(
        self,
        job_id: uuid.UUID,
        *,
        error_message: str,
        counters: ImportCounters,
    ) -> ImportJobSnapshot:
        with _store_errors("mark_import_failed"):
            job = self._require_job(job_id)
            _apply_counters(job, counters)
            job.status = ImportJobStatus.FAILED
            job.error_message = error_message
            job.completed_at = datetime.now(timezone.utc)
            self._session.flush()
        return _job_snapshot(job)

    # ── Unit of work ───────────────────────────────────────────────────────────

    def commit(self) -> None:
        with _store_errors("commit"):
            self._session.commit()

    def rollback(self) -> None:
        with _store_errors("rollback"):
            self._session.rollback()
