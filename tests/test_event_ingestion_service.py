"""
tests/test_event_ingestion_service.py

EventIngestionService against InMemoryCRMStore with a fixed clock.

Coverage
--------
- Call reports: activity, follow-up task, advisor notification, last contact
- Idempotency on the call id, including a concurrent duplicate delivery
- Unknown callers become leads; calls without a number are ignored
- Primary-write failures raise; side-effect failures are isolated
- Every workflow action variant, not-found paths and rejections
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.services.event_ingestion_service import (
    EventIngestionService,
    EventPersistenceError,
    IngestionStatus,
)
from app.services.side_effects import StepName, StepStatus
from db.models.activity import ActivitySubType
from db.models.appointment import AppointmentStatus
from db.models.client import ClientStatus, PipelineStage
from db.models.task import TaskPriority
from db.repositories.errors import DuplicateExternalEventError
from db.repositories.types import NewAppointment

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


def call_payload(call_id: str = "call-1", number: str | None = "+1 (555) 123-4567", **analysis) -> dict:
    call: dict = {"id": call_id, "type": "inboundPhoneCall"}
    if number is not None:
        call["customer"] = {"number": number}
    return {
        "message": {
            "type": "end-of-call-report",
            "call": call,
            "durationSeconds": 60,
            "analysis": {"summary": "Discussed retirement plan.", **analysis},
            "recordingUrl": "https://recordings.example.com/call-1.wav",
        }
    }


@pytest.fixture()
def service() -> EventIngestionService:
    return EventIngestionService(
        follow_up_due_days=1,
        task_title_max_chars=100,
        client_code_max_attempts=3,
        notify_advisor=True,
        clock=lambda: NOW,
    )


@pytest.fixture()
def advisor(store):
    return store.add_advisor("Avery Advisor")


# ---------------------------------------------------------------------------
# Call reports
# ---------------------------------------------------------------------------


class TestCallReport:
    def test_logs_call_with_all_side_effects(self, service, store, make_client, advisor) -> None:
        client = make_client("Ann", phone="555-123-4567", advisor_id=advisor.id)

        outcome = service.ingest_call_report(
            store=store,
            payload=call_payload(nextAction="Send the rollover paperwork"),
        )

        assert outcome.status == IngestionStatus.PROCESSED
        assert outcome.client_id == client.id
        (activity,) = store.activities
        assert activity.external_event_id == "call-1"
        assert activity.sub_type == ActivitySubType.AI
        assert activity.direction == "inbound"
        assert activity.description == "Discussed retirement plan. [call:call-1]"
        assert activity.recording_url == "https://recordings.example.com/call-1.wav"
        assert activity.duration_seconds == 60
        assert activity.analysis["next_action"] == "Send the rollover paperwork"
        (task,) = store.tasks
        assert task.title == "AI follow-up: Send the rollover paperwork"
        assert task.priority == TaskPriority.MEDIUM
        assert task.due_at == NOW + timedelta(days=1)
        assert task.due_at > NOW
        (notification,) = store.notifications
        assert notification.user_id == advisor.id
        assert store.get_client(client.id).last_contact_at == NOW
        assert outcome.task_id is not None

    def test_follow_up_title_is_truncated(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")

        service.ingest_call_report(store=store, payload=call_payload(nextAction="x" * 150))

        (task,) = store.tasks
        assert task.title == "AI follow-up: " + "x" * 100
        assert task.description == "x" * 150

    def test_no_next_action_no_task_and_no_advisor_no_notification(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")

        outcome = service.ingest_call_report(store=store, payload=call_payload())

        assert outcome.status == IngestionStatus.PROCESSED
        assert store.tasks == []
        assert store.notifications == []
        assert outcome.side_effects.step(StepName.TASK).status == StepStatus.SKIPPED

    def test_missing_summary_uses_default_description(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")
        payload = call_payload()
        payload["message"]["analysis"] = {}

        service.ingest_call_report(store=store, payload=payload)

        assert store.activities[0].description == "Vapi AI Call [call:call-1]"

    def test_same_call_twice_is_a_duplicate(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")
        payload = call_payload(nextAction="Call back")

        first = service.ingest_call_report(store=store, payload=payload)
        commits = store.commit_count
        second = service.ingest_call_report(store=store, payload=payload)

        assert first.status == IngestionStatus.PROCESSED
        assert second.status == IngestionStatus.DUPLICATE
        assert len(store.activities) == 1
        assert len(store.tasks) == 1
        assert store.commit_count == commits

    def test_concurrent_duplicate_stops_the_chain(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")
        store.fail_next("create_activity", DuplicateExternalEventError("call-1 already logged"))

        outcome = service.ingest_call_report(store=store, payload=call_payload(nextAction="Call back"))

        assert outcome.status == IngestionStatus.DUPLICATE
        assert outcome.side_effects.halted
        assert store.tasks == []

    def test_unknown_caller_becomes_a_lead(self, service, store) -> None:
        outcome = service.ingest_call_report(store=store, payload=call_payload(number="+1 (555) 987-6543"))

        assert outcome.status == IngestionStatus.PROCESSED
        (lead,) = store.clients
        assert lead.name == "Unknown Caller (+1 (555) 987-6543)"
        assert lead.status == ClientStatus.LEAD
        assert lead.pipeline_stage == PipelineStage.NEW_LEAD
        assert lead.client_code == "CL-0001"
        assert lead.primary_phone.value == "+1 (555) 987-6543"
        assert lead.primary_phone.key == "5559876543"
        assert store.activities[0].client_id == lead.id

    def test_no_number_and_no_match_is_ignored(self, service, store) -> None:
        outcome = service.ingest_call_report(store=store, payload=call_payload(number=None))

        assert outcome.status == IngestionStatus.IGNORED
        assert store.clients == []
        assert store.activities == []

    def test_other_message_types_are_ignored(self, service, store) -> None:
        outcome = service.ingest_call_report(store=store, payload={"message": {"type": "status-update"}})

        assert outcome.status == IngestionStatus.IGNORED
        assert store.commit_count == 0

    def test_report_without_call_id_is_rejected(self, service, store) -> None:
        payload = call_payload()
        del payload["message"]["call"]["id"]

        outcome = service.ingest_call_report(store=store, payload=payload)

        assert outcome.status == IngestionStatus.REJECTED

    def test_activity_failure_raises_and_skips_follow_ups(self, service, store, make_client) -> None:
        make_client("Ann", phone="555-123-4567")
        store.fail_next("create_activity")

        with pytest.raises(EventPersistenceError):
            service.ingest_call_report(store=store, payload=call_payload(nextAction="Call back"))

        assert store.activities == []
        assert store.tasks == []

    def test_lookup_failure_raises(self, service, store) -> None:
        store.fail_next("has_activity_for_event")

        with pytest.raises(EventPersistenceError):
            service.ingest_call_report(store=store, payload=call_payload())

    def test_task_failure_is_isolated(self, service, store, make_client, advisor) -> None:
        make_client("Ann", phone="555-123-4567", advisor_id=advisor.id)
        store.fail_next("create_task")

        outcome = service.ingest_call_report(store=store, payload=call_payload(nextAction="Call back"))

        assert outcome.status == IngestionStatus.PROCESSED
        assert outcome.side_effects.failed_steps == [StepName.TASK]
        assert store.tasks == []
        assert len(store.notifications) == 1
        assert len(store.activities) == 1


# ---------------------------------------------------------------------------
# Workflow actions: clients
# ---------------------------------------------------------------------------


class TestLeadsAndClients:
    def test_create_lead(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "create",
                "entity": "lead",
                "data": {"name": "Ann", "email": "Ann@Example.com", "phone": "555-123-4567", "tags": ["web"]},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        (lead,) = store.clients
        assert lead.status == ClientStatus.LEAD
        assert lead.pipeline_stage == PipelineStage.NEW_LEAD
        assert lead.client_code == "CL-0001"
        assert lead.primary_email.key == "ann@example.com"
        assert lead.tags == ("web",)

    def test_create_lead_updates_matching_client(self, service, store, make_client, advisor) -> None:
        existing = make_client("Ann Old", email="ann@example.com", phone="555-123-4567")
        existing_tags = store.get_client(existing.id).tags

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "create",
                "entity": "lead",
                "data": {
                    "name": "Ann New",
                    "phone": "(555) 123-4567",
                    "email": "ann.second@example.com",
                    "tags": ["referral"],
                    "advisorId": str(advisor.id),
                },
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        assert outcome.client_id == existing.id
        assert len(store.clients) == 1
        updated = store.get_client(existing.id)
        assert updated.name == "Ann New"
        assert updated.status == ClientStatus.ACTIVE
        assert updated.advisor_id == advisor.id
        assert updated.tags == existing_tags + ("referral",)
        assert updated.primary_email.key == "ann@example.com"
        assert "ann.second@example.com" in {email.key for email in updated.emails}

    def test_update_client(self, service, store, make_client) -> None:
        client = make_client("Ann")

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "update",
                "entity": "client",
                "data": {"id": str(client.id), "status": "Prospect", "pipelineStage": "Proposal"},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        updated = store.get_client(client.id)
        assert updated.status == ClientStatus.PROSPECT
        assert updated.pipeline_stage == PipelineStage.PROPOSAL
        assert updated.name == "Ann"

    def test_update_unknown_client(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "update", "entity": "client", "data": {"id": str(uuid.uuid4()), "name": "X"}},
        )

        assert outcome.status == IngestionStatus.NOT_FOUND
        assert store.commit_count == 0

    def test_unknown_action_is_rejected(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "archive", "entity": "client", "data": {}},
        )

        assert outcome.status == IngestionStatus.REJECTED
        assert not outcome.success

    def test_storage_failure_raises(self, service, store) -> None:
        store.fail_next("create_client")

        with pytest.raises(EventPersistenceError):
            service.ingest_workflow_action(
                store=store,
                payload={"action": "create", "entity": "lead", "data": {"name": "Ann"}},
            )
        assert store.clients == []


# ---------------------------------------------------------------------------
# Workflow actions: appointments
# ---------------------------------------------------------------------------


def _appointment(store, client_id, *, start: datetime, advisor_id=None):
    appointment = store.create_appointment(
        NewAppointment(
            title="Annual review",
            start_at=start,
            end_at=start + timedelta(minutes=45),
            appointment_type="Meeting",
            status=AppointmentStatus.SCHEDULED,
            client_id=client_id,
            advisor_id=advisor_id,
        )
    )
    store.commit()
    return appointment


class TestAppointments:
    def test_create_assigns_first_available_advisor(self, service, store, make_client) -> None:
        store.add_advisor("Busy", is_available=False)
        available = store.add_advisor("Free")
        client = make_client("Ann")

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "create",
                "entity": "event",
                "data": {
                    "title": "Intro call",
                    "startTime": "2026-10-20T15:00:00Z",
                    "endTime": "2026-10-20T15:30:00Z",
                    "clientId": str(client.id),
                },
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        (appointment,) = store.appointments
        assert appointment.advisor_id == available.id
        assert appointment.status == AppointmentStatus.SCHEDULED
        (notification,) = store.notifications
        assert notification.user_id == available.id

    def test_create_with_unknown_advisor(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "create",
                "entity": "event",
                "data": {
                    "title": "Intro call",
                    "startTime": "2026-10-20T15:00:00Z",
                    "endTime": "2026-10-20T15:30:00Z",
                    "advisorId": str(uuid.uuid4()),
                },
            },
        )

        assert outcome.status == IngestionStatus.NOT_FOUND
        assert store.appointments == []

    def test_reschedule_by_event_id_keeps_time_of_day(self, service, store, make_client, advisor) -> None:
        client = make_client("Ann")
        start = datetime(2026, 10, 20, 15, 0, tzinfo=timezone.utc)
        appointment = _appointment(store, client.id, start=start, advisor_id=advisor.id)

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "reschedule",
                "entity": "event",
                "data": {"eventId": str(appointment.id), "newDate": "2026-10-23"},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        moved = store.get_appointment(appointment.id)
        assert moved.start_at == datetime(2026, 10, 23, 15, 0, tzinfo=timezone.utc)
        assert moved.end_at == datetime(2026, 10, 23, 15, 45, tzinfo=timezone.utc)
        assert moved.status == AppointmentStatus.RESCHEDULED
        assert len(store.notifications) == 1

    def test_reschedule_by_email_and_day(self, service, store, make_client) -> None:
        client = make_client("Ann", email="ann@example.com")
        start = datetime(2026, 10, 20, 23, 30, tzinfo=timezone.utc)
        appointment = _appointment(store, client.id, start=start)

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "reschedule",
                "entity": "event",
                "data": {"email": "ANN@example.com", "existingDate": "2026-10-20", "newDate": "2026-10-21"},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        assert store.get_appointment(appointment.id).start_at == datetime(2026, 10, 21, 23, 30, tzinfo=timezone.utc)

    def test_reschedule_not_found_writes_nothing(self, service, store, make_client) -> None:
        client = make_client("Ann", email="ann@example.com")
        start = datetime(2026, 10, 20, 15, 0, tzinfo=timezone.utc)
        appointment = _appointment(store, client.id, start=start)
        commits = store.commit_count

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "reschedule",
                "entity": "event",
                "data": {"email": "ann@example.com", "existingDate": "2026-10-21", "newDate": "2026-10-25"},
            },
        )

        assert outcome.status == IngestionStatus.NOT_FOUND
        assert store.commit_count == commits
        assert store.get_appointment(appointment.id).start_at == start
        assert store.notifications == []


# ---------------------------------------------------------------------------
# Workflow actions: call handling
# ---------------------------------------------------------------------------


class TestCallActions:
    def test_log_message_creates_lead_task_and_voicemail(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "log_message",
                "entity": "call",
                "data": {"name": "Ben", "phone": "555-222-3333", "reason": "Question about RMDs", "address": "1 Main St"},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        (lead,) = store.clients
        assert lead.name == "Ben"
        assert lead.status == ClientStatus.LEAD
        (task,) = store.tasks
        assert task.title == "Callback: Ben"
        assert task.priority == TaskPriority.HIGH
        assert task.description == "Reason: Question about RMDs\nAddress: 1 Main St\nPhone: 555-222-3333"
        (activity,) = store.activities
        assert activity.sub_type == ActivitySubType.VOICEMAIL
        assert activity.description == "Message: Question about RMDs"
        assert activity.status == "Pending Callback"

    def test_log_message_for_known_caller(self, service, store, make_client) -> None:
        client = make_client("Cara", phone="(555) 444-5555")

        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "log_message", "data": {"phone": "5554445555"}},
        )

        assert outcome.client_id == client.id
        assert len(store.clients) == 1
        assert store.tasks[0].title == "Callback: Voicemail"
        assert store.activities[0].description == "Message: Voicemail left"

    def test_log_message_with_task_entity_creates_callback(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "log_message", "entity": "task", "data": {"name": "Bob", "phone": "5551230000"}},
        )

        assert outcome.status == IngestionStatus.PROCESSED
        (lead,) = store.clients
        assert lead.name == "Bob"
        (task,) = store.tasks
        assert task.title == "Callback: Bob"
        assert task.client_id == lead.id

    def test_log_message_without_caller_still_creates_task(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "log_message", "data": {"reason": "Hung up"}},
        )

        assert outcome.status == IngestionStatus.PROCESSED
        assert outcome.client_id is None
        assert store.clients == []
        assert store.activities == []
        assert store.tasks[0].client_id is None

    def test_log_transfer(self, service, store, make_client) -> None:
        client = make_client("Dan", phone="555-666-7777")

        outcome = service.ingest_workflow_action(
            store=store,
            payload={
                "action": "log_transfer",
                "entity": "call",
                "data": {"phone": "+1 555 666 7777", "advisorName": "Avery", "success": True},
            },
        )

        assert outcome.status == IngestionStatus.PROCESSED
        (activity,) = store.activities
        assert activity.sub_type == ActivitySubType.TRANSFER
        assert activity.description == "Call transferred to Avery"
        assert activity.status == "Completed"
        assert store.get_client(client.id).last_contact_at == NOW

    def test_failed_transfer_is_logged_as_failed(self, service, store, make_client) -> None:
        client = make_client("Dan")

        service.ingest_workflow_action(
            store=store,
            payload={"action": "log_transfer", "data": {"clientId": str(client.id)}},
        )

        assert store.activities[0].status == "Failed"
        assert store.activities[0].description == "Call transferred to advisor"

    def test_transfer_for_unknown_caller(self, service, store) -> None:
        outcome = service.ingest_workflow_action(
            store=store,
            payload={"action": "log_transfer", "data": {"phone": "555-000-0000"}},
        )

        assert outcome.status == IngestionStatus.NOT_FOUND
        assert store.activities == []
