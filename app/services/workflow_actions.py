"""
app/services/workflow_actions.py

Workflow-automation webhook actions as a closed set of typed variants.

Each recognised (action, entity) pair maps to exactly one pydantic model.
parse_workflow_action() is the single entry point; anything it cannot map
or validate is rejected with a message instead of being ignored.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Mapping, Union
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError, model_validator

ClientStatusValue = Literal["Lead", "Prospect", "Active"]
PipelineStageValue = Literal[
    "New Lead",
    "Contacted",
    "Appointment Booked",
    "Attended",
    "Proposal",
    "Client Onboarded",
]

_MODEL_CONFIG = {
    "frozen": True,
    "populate_by_name": True,
    "extra": "ignore",
    "str_strip_whitespace": True,
}


class WorkflowActionRejected(ValueError):
    """
    Raised when a workflow payload names an unknown action or carries
    invalid data.
    """


class CreateLead(BaseModel):
    model_config = _MODEL_CONFIG

    name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    tags: list[str] = Field(default_factory=list)
    advisor_id: UUID | None = Field(default=None, alias="advisorId")


class UpdateClient(BaseModel):
    model_config = _MODEL_CONFIG

    id: UUID
    name: str | None = Field(default=None, min_length=1)
    status: ClientStatusValue | None = None
    pipeline_stage: PipelineStageValue | None = Field(default=None, alias="pipelineStage")
    tags: list[str] | None = None
    advisor_id: UUID | None = Field(default=None, alias="advisorId")

    @model_validator(mode="after")
    def _require_change(self) -> "UpdateClient":
        if all(
            value is None
            for value in (self.name, self.status, self.pipeline_stage, self.tags, self.advisor_id)
        ):
            raise ValueError("No updatable fields supplied.")
        return self


class CreateAppointment(BaseModel):
    model_config = _MODEL_CONFIG

    title: str = Field(min_length=1)
    start_time: datetime = Field(alias="startTime")
    end_time: datetime = Field(alias="endTime")
    appointment_type: str = Field(default="Meeting", alias="type")
    client_id: UUID | None = Field(default=None, alias="clientId")
    advisor_id: UUID | None = Field(default=None, alias="advisorId")

    @model_validator(mode="after")
    def _check_window(self) -> "CreateAppointment":
        if self.end_time < self.start_time:
            raise ValueError("endTime must not be before startTime.")
        return self


class RescheduleAppointment(BaseModel):
    model_config = _MODEL_CONFIG

    event_id: UUID | None = Field(default=None, alias="eventId")
    email: str | None = None
    existing_date: date | datetime | None = Field(default=None, alias="existingDate")
    new_date: date | datetime = Field(alias="newDate")

    @model_validator(mode="after")
    def _require_locator(self) -> "RescheduleAppointment":
        if self.event_id is None and not (self.email and self.existing_date):
            raise ValueError("Provide eventId, or email together with existingDate.")
        return self


class LogMessage(BaseModel):
    model_config = _MODEL_CONFIG

    name: str | None = None
    phone: str | None = None
    reason: str | None = None
    address: str | None = None
    client_id: UUID | None = Field(default=None, alias="clientId")


class LogTransfer(BaseModel):
    model_config = _MODEL_CONFIG

    phone: str | None = None
    advisor_name: str | None = Field(default=None, alias="advisorName")
    advisor_id: UUID | None = Field(default=None, alias="advisorId")
    client_id: UUID | None = Field(default=None, alias="clientId")
    success: bool = False


WorkflowAction = Union[
    CreateLead,
    UpdateClient,
    CreateAppointment,
    RescheduleAppointment,
    LogMessage,
    LogTransfer,
]

# Call-logging actions are resolved on action alone; any entity is accepted.
ANY_ENTITY = "*"

ACTION_VARIANTS: dict[tuple[str, str], type[BaseModel]] = {
    ("create", "lead"): CreateLead,
    ("update", "client"): UpdateClient,
    ("create", "event"): CreateAppointment,
    ("reschedule", "event"): RescheduleAppointment,
    ("log_message", ANY_ENTITY): LogMessage,
    ("log_transfer", ANY_ENTITY): LogTransfer,
}


def _token(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()) if item != "__root__")
        message = str(error.get("msg", "invalid value"))
        parts.append(f"{location}: {message}" if location else message)
    return "; ".join(parts) or "Invalid action data."


def parse_workflow_action(payload: Mapping[str, Any]) -> WorkflowAction:
    """
    Map {action, entity, data} onto its variant, or raise
    WorkflowActionRejected.
    """

    if not isinstance(payload, Mapping):
        raise WorkflowActionRejected("Payload must be a JSON object.")

    action = _token(payload.get("action"))
    entity = _token(payload.get("entity"))
    variant = ACTION_VARIANTS.get((action, entity)) or ACTION_VARIANTS.get((action, ANY_ENTITY))
    if variant is None:
        raise WorkflowActionRejected(f"Unknown action or entity: action={action!r} entity={entity!r}.")

    data = payload.get("data")
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise WorkflowActionRejected("data must be a JSON object.")

    try:
        return variant.model_validate(dict(data))
    except ValidationError as exc:
        raise WorkflowActionRejected(_describe_validation_error(exc)) from exc
