"""
app/services/event_ingestion_service.py

Service layer for externally triggered CRM events.

Two sources feed this service: the voice-AI platform's end-of-call report
and workflow-automation actions ({action, entity, data}). Each event is
resolved to a client, applied as one primary mutation, and followed by
best-effort side effects through SideEffectDispatcher.

Outcomes are returned, not raised: duplicates, ignored messages, unknown
records and rejected payloads are all normal results. Only a failure of the
primary mutation raises EventPersistenceError, so the sender can retry.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable, Mapping

from app.config import get_event_ingestion_settings
from app.identity.client_codes import ClientCodeAllocator
from app.identity.conflict_policy import DuplicateStrategy, IncomingClient, UpdateFields, decide
from app.identity.normalizer import normalize_email, normalize_phone
from app.identity.resolver import IdentityCandidates, IdentityResolver
from app.services.call_report import CallReport, parse_call_report
from app.services.side_effects import (
    SideEffectDispatcher,
    SideEffectPlan,
    SideEffectReport,
    StepName,
    StepStatus,
)
from app.services.workflow_actions import (
    CreateAppointment,
    CreateLead,
    LogMessage,
    LogTransfer,
    RescheduleAppointment,
    UpdateClient,
    WorkflowAction,
    WorkflowActionRejected,
    parse_workflow_action,
)
from db.models.activity import ActivityDirection, ActivitySubType, ActivityType
from db.models.appointment import AppointmentStatus
from db.models.client import ClientStatus, EmailType, PhoneType, PipelineStage
from db.models.notification import NotificationType
from db.models.task import TaskPriority, TaskStatus
from db.repositories.errors import StoreError
from db.repositories.store import CRMStore
from db.repositories.types import (
    AppointmentSnapshot,
    ClientChanges,
    ClientSnapshot,
    ContactPoint,
    NewActivity,
    NewAppointment,
    NewClient,
    NewNotification,
    NewTask,
)

logger = logging.getLogger(__name__)

__all__ = [
    "EventIngestionService",
    "EventPersistenceError",
    "IngestionOutcome",
    "IngestionStatus",
    "get_event_ingestion_service",
]

UNKNOWN_CALLER = "Unknown Caller"
DEFAULT_CALL_DESCRIPTION = "Vapi AI Call"
FOLLOW_UP_PREFIX = "AI follow-up: "


# ---------------------------------------------------------------------------
# Results and exceptions
# ---------------------------------------------------------------------------


class IngestionStatus:
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"


class EventPersistenceError(RuntimeError):
    """
    Raised when the primary mutation of an event cannot be persisted.
    """


@dataclass(frozen=True)
class IngestionOutcome:
    status: str
    message: str
    client_id: uuid.UUID | None = None
    record_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    side_effects: SideEffectReport | None = None

    @property
    def success(self) -> bool:
        return self.status in (IngestionStatus.PROCESSED, IngestionStatus.DUPLICATE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "client_id": str(self.client_id) if self.client_id else None,
            "record_id": str(self.record_id) if self.record_id else None,
            "task_id": str(self.task_id) if self.task_id else None,
            "side_effects": (
                [step.to_dict() for step in self.side_effects.steps]
                if self.side_effects is not None
                else []
            ),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return _as_utc(value).date()
    return value


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class EventIngestionService:
    """
    Applies voice-AI call reports and workflow actions to the CRM.
    """

    def __init__(
        self,
        *,
        follow_up_due_days: int = 1,
        task_title_max_chars: int = 100,
        client_code_max_attempts: int = 3,
        notify_advisor: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._follow_up_due_days = max(0, follow_up_due_days)
        self._task_title_max_chars = max(1, task_title_max_chars)
        self._client_code_max_attempts = max(1, client_code_max_attempts)
        self._notify_advisor = notify_advisor
        self._clock = clock

    # ------------------------------------------------------------------
    # Voice-AI call reports
    # ------------------------------------------------------------------

    def ingest_call_report(self, *, store: CRMStore, payload: Mapping[str, Any]) -> IngestionOutcome:
        """
        Log one end-of-call report against the caller's client record.

        Idempotent on the call id: a report whose call is already logged is
        acknowledged as a duplicate without writing anything.
        """

        report = parse_call_report(payload)
        if not report.is_end_of_call:
            return IngestionOutcome(
                status=IngestionStatus.IGNORED,
                message=f"Ignored message type {report.message_type!r}.",
            )
        if not report.call_id:
            return IngestionOutcome(
                status=IngestionStatus.REJECTED,
                message="End-of-call report has no call id.",
            )

        try:
            if store.has_activity_for_event(report.call_id):
                logger.info("Call report already logged call_id=%s", report.call_id)
                return IngestionOutcome(
                    status=IngestionStatus.DUPLICATE,
                    message=f"Call {report.call_id} already logged.",
                )
            client = IdentityResolver(store).resolve(
                IdentityCandidates(phone=report.customer_number)
            )
            if client is None:
                if not report.customer_number:
                    return IngestionOutcome(
                        status=IngestionStatus.IGNORED,
                        message="Call has no customer number and no matching client.",
                    )
                client = self._create_lead(
                    store,
                    name=f"{UNKNOWN_CALLER} ({report.customer_number})",
                    phone=report.customer_number,
                )
                store.commit()
                logger.info(
                    "Created lead for unknown caller client_id=%s call_id=%s",
                    client.id,
                    report.call_id,
                )
        except StoreError as exc:
            self._safe_rollback(store)
            logger.exception("Call report ingestion failed call_id=%s", report.call_id)
            raise EventPersistenceError(f"Failed to ingest call {report.call_id}.") from exc

        now = self._clock()
        side_effects = SideEffectDispatcher(store).dispatch(
            SideEffectPlan(
                client_id=client.id,
                activity=self._call_activity(client, report, now),
                task=self._follow_up_task(client, report, now),
                notification=self._call_notification(client, report),
                touch_last_contact_at=now,
                activity_required=True,
            )
        )

        activity = side_effects.step(StepName.ACTIVITY)
        if activity is not None and activity.status == StepStatus.DUPLICATE:
            return IngestionOutcome(
                status=IngestionStatus.DUPLICATE,
                message=f"Call {report.call_id} already logged.",
                client_id=client.id,
                side_effects=side_effects,
            )
        self._require_step(side_effects, StepName.ACTIVITY, f"call {report.call_id}")

        logger.info(
            "Call report logged call_id=%s client_id=%s failed_steps=%s",
            report.call_id,
            client.id,
            side_effects.failed_steps,
        )
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message=f"Call {report.call_id} logged.",
            client_id=client.id,
            record_id=side_effects.record_id(StepName.ACTIVITY),
            task_id=side_effects.record_id(StepName.TASK),
            side_effects=side_effects,
        )

    def _call_activity(self, client: ClientSnapshot, report: CallReport, now: datetime) -> NewActivity:
        summary = report.analysis.summary or DEFAULT_CALL_DESCRIPTION
        return NewActivity(
            client_id=client.id,
            activity_type=ActivityType.CALL,
            sub_type=ActivitySubType.AI,
            direction=report.direction,
            description=f"{summary} [call:{report.call_id}]",
            status="Completed",
            external_event_id=report.call_id,
            duration_seconds=report.duration_seconds,
            analysis=report.analysis.to_dict() or None,
            transcript=report.transcript or None,
            recording_url=report.recording_url,
            occurred_at=now,
        )

    def _follow_up_task(self, client: ClientSnapshot, report: CallReport, now: datetime) -> NewTask | None:
        next_action = report.analysis.next_action
        if not next_action:
            return None
        return NewTask(
            title=f"{FOLLOW_UP_PREFIX}{next_action[: self._task_title_max_chars]}",
            description=next_action,
            priority=TaskPriority.MEDIUM,
            status=TaskStatus.PENDING,
            task_type="Follow-up",
            due_at=now + timedelta(days=self._follow_up_due_days),
            client_id=client.id,
            assigned_to_id=client.advisor_id,
        )

    def _call_notification(self, client: ClientSnapshot, report: CallReport) -> NewNotification | None:
        if not self._notify_advisor or client.advisor_id is None:
            return None
        return NewNotification(
            user_id=client.advisor_id,
            notification_type=NotificationType.CALL,
            title=f"AI call with {client.name}",
            message=report.analysis.summary or "Call completed.",
            link=f"/clients/{client.id}",
        )

    # ------------------------------------------------------------------
    # Workflow actions
    # ------------------------------------------------------------------

    def ingest_workflow_action(self, *, store: CRMStore, payload: Mapping[str, Any]) -> IngestionOutcome:
        """
        Parse a workflow action and apply it. Unknown or invalid actions are
        rejected with a message.
        """

        try:
            action = parse_workflow_action(payload)
        except WorkflowActionRejected as exc:
            logger.info("Workflow action rejected reason=%s", exc)
            return IngestionOutcome(status=IngestionStatus.REJECTED, message=str(exc))

        try:
            return self._apply_action(store, action)
        except StoreError as exc:
            self._safe_rollback(store)
            logger.exception("Workflow action failed action=%s", type(action).__name__)
            raise EventPersistenceError(
                f"Failed to apply workflow action {type(action).__name__}."
            ) from exc

    def _apply_action(self, store: CRMStore, action: WorkflowAction) -> IngestionOutcome:
        if isinstance(action, CreateLead):
            return self._create_lead_action(store, action)
        if isinstance(action, UpdateClient):
            return self._update_client_action(store, action)
        if isinstance(action, CreateAppointment):
            return self._create_appointment_action(store, action)
        if isinstance(action, RescheduleAppointment):
            return self._reschedule_action(store, action)
        if isinstance(action, LogMessage):
            return self._log_message_action(store, action)
        if isinstance(action, LogTransfer):
            return self._log_transfer_action(store, action)
        raise TypeError(f"Unhandled workflow action: {action!r}")

    def _create_lead_action(self, store: CRMStore, action: CreateLead) -> IngestionOutcome:
        incoming = IncomingClient(
            name=action.name,
            status=None,
            tags=tuple(action.tags),
            emails=_contact_points(action.email, EmailType.PERSONAL, normalize_email),
            phones=_contact_points(action.phone, PhoneType.CELLULAR, normalize_phone),
        )
        existing = IdentityResolver(store).resolve(
            IdentityCandidates(name=action.name, email=action.email, phone=action.phone)
        )

        if existing is not None:
            decision = decide(existing, DuplicateStrategy.UPDATE, incoming)
            if not isinstance(decision, UpdateFields):
                raise TypeError(f"Unexpected conflict decision for lead: {decision!r}")
            changes = decision.to_changes()
            new_tags = [tag for tag in action.tags if tag not in existing.tags]
            if new_tags:
                changes = replace(changes, tags=existing.tags + tuple(new_tags))
            if action.advisor_id is not None:
                changes = replace(changes, advisor_id=action.advisor_id)
            updated = store.update_client(existing.id, changes)
            store.commit()
            logger.info("Lead matched existing client client_id=%s", updated.id)
            return IngestionOutcome(
                status=IngestionStatus.PROCESSED,
                message="Lead matched an existing client; client updated.",
                client_id=updated.id,
                record_id=updated.id,
            )

        created = self._create_lead(
            store,
            name=action.name,
            email=action.email,
            phone=action.phone,
            tags=tuple(action.tags),
            advisor_id=action.advisor_id,
        )
        store.commit()
        logger.info("Lead created client_id=%s client_code=%s", created.id, created.client_code)
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message=f"Lead {created.client_code} created.",
            client_id=created.id,
            record_id=created.id,
        )

    def _update_client_action(self, store: CRMStore, action: UpdateClient) -> IngestionOutcome:
        if store.get_client(action.id) is None:
            return IngestionOutcome(
                status=IngestionStatus.NOT_FOUND,
                message=f"Client not found: {action.id}",
            )
        updated = store.update_client(
            action.id,
            ClientChanges(
                name=action.name,
                status=action.status,
                pipeline_stage=action.pipeline_stage,
                tags=tuple(action.tags) if action.tags is not None else None,
                advisor_id=action.advisor_id,
            ),
        )
        store.commit()
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message="Client updated.",
            client_id=updated.id,
            record_id=updated.id,
        )

    def _create_appointment_action(self, store: CRMStore, action: CreateAppointment) -> IngestionOutcome:
        if action.client_id is not None and store.get_client(action.client_id) is None:
            return IngestionOutcome(
                status=IngestionStatus.NOT_FOUND,
                message=f"Client not found: {action.client_id}",
            )
        if action.advisor_id is not None:
            advisor = store.get_advisor(action.advisor_id)
            if advisor is None:
                return IngestionOutcome(
                    status=IngestionStatus.NOT_FOUND,
                    message=f"Advisor not found: {action.advisor_id}",
                )
        else:
            advisor = store.first_available_advisor()

        appointment = store.create_appointment(
            NewAppointment(
                title=action.title,
                start_at=action.start_time,
                end_at=action.end_time,
                appointment_type=action.appointment_type,
                status=AppointmentStatus.SCHEDULED,
                client_id=action.client_id,
                advisor_id=advisor.id if advisor is not None else None,
            )
        )
        store.commit()
        logger.info(
            "Appointment created appointment_id=%s advisor_id=%s",
            appointment.id,
            appointment.advisor_id,
        )

        side_effects = SideEffectDispatcher(store).dispatch(
            SideEffectPlan(
                client_id=appointment.client_id,
                notification=self._appointment_notification(appointment, "New appointment"),
            )
        )
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message="Appointment created.",
            client_id=appointment.client_id,
            record_id=appointment.id,
            side_effects=side_effects,
        )

    def _reschedule_action(self, store: CRMStore, action: RescheduleAppointment) -> IngestionOutcome:
        appointment = self._locate_appointment(store, action)
        if appointment is None:
            return IngestionOutcome(
                status=IngestionStatus.NOT_FOUND,
                message="No matching appointment to reschedule.",
            )

        original_start = _as_utc(appointment.start_at)
        new_day = _as_day(action.new_date)
        new_start = original_start.replace(year=new_day.year, month=new_day.month, day=new_day.day)
        new_end = _as_utc(appointment.end_at) + (new_start - original_start)

        rescheduled = store.reschedule_appointment(
            appointment.id,
            start_at=new_start,
            end_at=new_end,
            status=AppointmentStatus.RESCHEDULED,
        )
        store.commit()
        logger.info(
            "Appointment rescheduled appointment_id=%s start_at=%s",
            rescheduled.id,
            rescheduled.start_at.isoformat(),
        )

        side_effects = SideEffectDispatcher(store).dispatch(
            SideEffectPlan(
                client_id=rescheduled.client_id,
                notification=self._appointment_notification(rescheduled, "Appointment rescheduled"),
            )
        )
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message="Appointment rescheduled.",
            client_id=rescheduled.client_id,
            record_id=rescheduled.id,
            side_effects=side_effects,
        )

    @staticmethod
    def _locate_appointment(store: CRMStore, action: RescheduleAppointment) -> AppointmentSnapshot | None:
        if action.event_id is not None:
            return store.get_appointment(action.event_id)

        email_key = normalize_email(action.email)
        if not email_key or action.existing_date is None:
            return None
        client = store.find_client_by_email(email_key)
        if client is None:
            return None
        day = _as_day(action.existing_date)
        starts_from = datetime.combine(day, time.min, tzinfo=timezone.utc)
        return store.find_client_appointment(
            client.id,
            starts_from=starts_from,
            starts_until=starts_from + timedelta(days=1),
        )

    def _appointment_notification(
        self,
        appointment: AppointmentSnapshot,
        title: str,
    ) -> NewNotification | None:
        if not self._notify_advisor or appointment.advisor_id is None:
            return None
        return NewNotification(
            user_id=appointment.advisor_id,
            notification_type=NotificationType.APPOINTMENT,
            title=title,
            message=f"{appointment.title} at {_as_utc(appointment.start_at):%Y-%m-%d %H:%M} UTC",
            link=f"/appointments/{appointment.id}",
        )

    def _log_message_action(self, store: CRMStore, action: LogMessage) -> IngestionOutcome:
        client = self._client_by_id_or_phone(store, action.client_id, action.phone)
        if client is None and (action.name or action.phone):
            client = self._create_lead(
                store,
                name=action.name or UNKNOWN_CALLER,
                phone=action.phone,
            )
            store.commit()
            logger.info("Created lead for voicemail client_id=%s", client.id)

        now = self._clock()
        activity = None
        if client is not None:
            activity = NewActivity(
                client_id=client.id,
                activity_type=ActivityType.CALL,
                sub_type=ActivitySubType.VOICEMAIL,
                direction=ActivityDirection.INBOUND,
                description=f"Message: {action.reason or 'Voicemail left'}",
                status="Pending Callback",
                occurred_at=now,
            )
        task = NewTask(
            title=f"Callback: {action.name or 'Voicemail'}",
            description="\n".join(
                (
                    f"Reason: {action.reason or 'Not provided'}",
                    f"Address: {action.address or 'Not provided'}",
                    f"Phone: {action.phone or 'Not provided'}",
                )
            ),
            priority=TaskPriority.HIGH,
            status=TaskStatus.PENDING,
            task_type="Call",
            due_at=now,
            client_id=client.id if client is not None else None,
            assigned_to_id=client.advisor_id if client is not None else None,
        )

        side_effects = SideEffectDispatcher(store).dispatch(
            SideEffectPlan(
                client_id=client.id if client is not None else None,
                activity=activity,
                task=task,
                touch_last_contact_at=now if client is not None else None,
            )
        )
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message=(
                "Callback task created."
                if side_effects.succeeded(StepName.TASK)
                else "Voicemail received; callback task could not be created."
            ),
            client_id=client.id if client is not None else None,
            record_id=side_effects.record_id(StepName.ACTIVITY),
            task_id=side_effects.record_id(StepName.TASK),
            side_effects=side_effects,
        )

    def _log_transfer_action(self, store: CRMStore, action: LogTransfer) -> IngestionOutcome:
        client = self._client_by_id_or_phone(store, action.client_id, action.phone)
        if client is None:
            return IngestionOutcome(
                status=IngestionStatus.NOT_FOUND,
                message="No client matches the transferred call.",
            )

        now = self._clock()
        side_effects = SideEffectDispatcher(store).dispatch(
            SideEffectPlan(
                client_id=client.id,
                activity=NewActivity(
                    client_id=client.id,
                    activity_type=ActivityType.CALL,
                    sub_type=ActivitySubType.TRANSFER,
                    direction=ActivityDirection.INBOUND,
                    description=f"Call transferred to {action.advisor_name or 'advisor'}",
                    status="Completed" if action.success else "Failed",
                    occurred_at=now,
                ),
                touch_last_contact_at=now,
                activity_required=True,
            )
        )
        self._require_step(side_effects, StepName.ACTIVITY, "call transfer")
        return IngestionOutcome(
            status=IngestionStatus.PROCESSED,
            message="Transfer logged.",
            client_id=client.id,
            record_id=side_effects.record_id(StepName.ACTIVITY),
            side_effects=side_effects,
        )

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _client_by_id_or_phone(
        store: CRMStore,
        client_id: uuid.UUID | None,
        phone: str | None,
    ) -> ClientSnapshot | None:
        if client_id is not None:
            client = store.get_client(client_id)
            if client is not None:
                return client
        return IdentityResolver(store).resolve(IdentityCandidates(phone=phone))

    def _create_lead(
        self,
        store: CRMStore,
        *,
        name: str,
        email: str | None = None,
        phone: str | None = None,
        tags: tuple[str, ...] = (),
        advisor_id: uuid.UUID | None = None,
    ) -> ClientSnapshot:
        emails = _contact_points(email, EmailType.PERSONAL, normalize_email)
        phones = _contact_points(phone, PhoneType.CELLULAR, normalize_phone)
        return ClientCodeAllocator(store).create_with_next_code(
            lambda code: NewClient(
                name=name,
                status=ClientStatus.LEAD,
                pipeline_stage=PipelineStage.NEW_LEAD,
                client_code=code,
                tags=tags,
                advisor_id=advisor_id,
                phones=phones,
                emails=emails,
            ),
            max_attempts=self._client_code_max_attempts,
        )

    @staticmethod
    def _require_step(side_effects: SideEffectReport, name: str, subject: str) -> None:
        step = side_effects.step(name)
        if step is not None and step.status == StepStatus.FAILED:
            raise EventPersistenceError(f"Failed to record {name} for {subject}: {step.error}")

    @staticmethod
    def _safe_rollback(store: CRMStore) -> None:
        try:
            store.rollback()
        except StoreError as exc:
            logger.warning("Rollback failed error=%s", exc)


def _contact_points(
    value: str | None,
    kind: str,
    normalize: Callable[[Any], str],
) -> tuple[ContactPoint, ...]:
    key = normalize(value)
    if not key or value is None:
        return ()
    return (ContactPoint(value=value.strip(), key=key, kind=kind, is_primary=True),)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_event_ingestion_service() -> EventIngestionService:
    """
    Build and cache the event ingestion service with env-driven settings.
    """
    settings = get_event_ingestion_settings()
    return EventIngestionService(
        follow_up_due_days=settings.follow_up_due_days,
        task_title_max_chars=settings.task_title_max_chars,
        client_code_max_attempts=settings.client_code_max_attempts,
        notify_advisor=settings.notify_advisor,
    )
