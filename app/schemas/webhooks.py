"""
Response schemas for voice-AI and workflow-automation webhooks.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class SideEffectStepResponse(BaseModel):
    name: str
    status: str
    record_id: str | None = None
    error: str | None = None


class IngestionOutcomeResponse(BaseModel):
    status: str
    message: str
    client_id: str | None = None
    record_id: str | None = None
    task_id: str | None = None
    side_effects: list[SideEffectStepResponse] = Field(default_factory=list)


class CallReportAckResponse(BaseModel):
    """
    Acknowledgement for the voice-AI webhook. received is true whenever the
    payload was accepted, including ignored and duplicate reports.
    """

    received: bool = True
    outcome: IngestionOutcomeResponse


class WorkflowActionResponse(BaseModel):
    success: bool
    outcome: IngestionOutcomeResponse
